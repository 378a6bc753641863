"""User-local ``.desktop`` overrides for native applications.

The override is a copy of the system entry in ``~/.local/share/applications``
with its Exec wrapped in the GPU environment and an ownership marker line.
Only files carrying the marker are ever rewritten or deleted.
"""
import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from .environment import MANAGED_ENV_KEYS
from .errors import IoFailure, RefusedWrite, ValidationFailure
from .models import LaunchDescriptor
from .region import ManagedRegion
from .utils import home_dir, read_text_exact, write_text_atomic

log = logging.getLogger(__name__)

KAEDE_MARKER = "X-Kaede-Managed=true"
MARKER_PREFIX = "X-Kaede-Managed="
DESKTOP_GROUP = "[Desktop Entry]"
FALLBACK_ICON = "application-x-executable"

_FLATPAK_RUN = re.compile(r"(?:^|\s)(?:\S*/)?flatpak\s+run(?=\s|$)")

def user_launcher_path(desktop_id: str, home: Optional[Path] = None) -> Path:
    return home_dir(home) / ".local/share/applications" / desktop_id

def file_contains_marker(path: Path) -> bool:
    try:
        return KAEDE_MARKER in path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False

def desktop_exec_value(content: str) -> Optional[str]:
    """First non-empty Exec= of the [Desktop Entry] group."""
    in_entry = False
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("["):
            in_entry = stripped == DESKTOP_GROUP
            continue
        if in_entry and line.startswith("Exec="):
            value = line[len("Exec="):].strip()
            if value:
                return value
    return None

# --- Exec wrapping ---

def _is_managed_assignment(token: str) -> bool:
    key, sep, _ = token.partition("=")
    return bool(sep) and key in MANAGED_ENV_KEYS

def _is_managed_flatpak_env(token: str) -> bool:
    return token.startswith("--env=") and _is_managed_assignment(token[len("--env="):])

def unwrap_exec(exec_: str) -> str:
    """Drop anything a previous override injected, leaving the original command."""
    parts = exec_.split()
    if len(parts) > 1 and parts[0] == "env" and _is_managed_assignment(parts[1]):
        rest = parts[1:]
        while rest and _is_managed_assignment(rest[0]):
            rest.pop(0)
        if rest and "=" in rest[0] and not rest[0].startswith("-"):
            rest.insert(0, "env")
        parts = rest
    if looks_like_flatpak_run(" ".join(parts)):
        parts = [p for p in parts if not _is_managed_flatpak_env(p)]
    return " ".join(parts)

def looks_like_flatpak_run(exec_: str) -> bool:
    return _FLATPAK_RUN.search(exec_) is not None

def wrap_flatpak_run_with_env(exec_: str, env: List[str]) -> str:
    parts = exec_.split()
    for i in range(len(parts) - 1):
        if (parts[i] == "flatpak" or parts[i].endswith("/flatpak")) and parts[i + 1] == "run":
            return " ".join(parts[:i + 2] + [f"--env={kv}" for kv in env] + parts[i + 2:])
    return f"env {' '.join(env)} {exec_}"

def wrap_exec(exec_: str, env: List[str]) -> str:
    original = unwrap_exec(exec_)
    if looks_like_flatpak_run(original):
        return wrap_flatpak_run_with_env(original, env)
    return f"env {' '.join(env)} {original}"

# --- file content ---

def rewrite_desktop_content(source: str, wrapped_exec: str, app: LaunchDescriptor) -> str:
    if not source.strip():
        icon = app.icon or FALLBACK_ICON
        return (f"{DESKTOP_GROUP}\nType=Application\nName={app.name}\nIcon={icon}\n"
                f"Exec={wrapped_exec}\nTerminal=false\n{KAEDE_MARKER}\n")

    lines = source.splitlines()
    out: List[str] = []
    in_entry = False
    entry_end = None
    exec_done = False
    has_marker = False

    for line in lines:
        stripped = line.strip()
        if stripped.startswith("["):
            if in_entry and entry_end is None:
                entry_end = len(out)
            in_entry = stripped == DESKTOP_GROUP
            out.append(line)
            continue
        if line.startswith(MARKER_PREFIX):
            has_marker = True
            out.append(KAEDE_MARKER)
            continue
        if in_entry and not exec_done and line.startswith("Exec="):
            out.append(f"Exec={wrapped_exec}")
            exec_done = True
            continue
        out.append(line)
    if in_entry and entry_end is None:
        entry_end = len(out)

    if entry_end is None:
        out[0:0] = [DESKTOP_GROUP]
        entry_end = 1
    # Keys go before any blank lines that separate the next group.
    while entry_end > 0 and not out[entry_end - 1].strip():
        entry_end -= 1
    extra = []
    if not exec_done:
        extra.append(f"Exec={wrapped_exec}")
    if not has_marker:
        extra.append(KAEDE_MARKER)
    out[entry_end:entry_end] = extra
    return "\n".join(out) + "\n"

class DesktopOverrideRegion(ManagedRegion):
    """The override file as a whole; `doc` is the source entry's text."""

    def __init__(self, app: LaunchDescriptor):
        self.app = app

    def original_exec(self, doc: str) -> str:
        return desktop_exec_value(doc) or self.app.exec

    def locate(self, doc: str):
        return doc if KAEDE_MARKER in doc else None

    def upsert(self, doc: str, env: List[str]) -> Tuple[str, bool]:
        new = rewrite_desktop_content(doc, wrap_exec(self.original_exec(doc), env), self.app)
        return new, new != doc

    def remove(self, doc: str) -> Tuple[str, bool]:
        return "", bool(doc)

    def verify(self, doc: str, env: Optional[List[str]]) -> bool:
        if env is None:
            return not doc
        if self.locate(doc) is None:
            return False
        current = desktop_exec_value(doc) or ""
        return current == wrap_exec(current, env)

def read_source_entry(path: Path) -> str:
    try:
        return read_text_exact(path)
    except IoFailure as e:
        log.debug("source entry unreadable, synthesizing: %s", e)
        return ""

def write_desktop_override(app: LaunchDescriptor, env: List[str],
                           home: Optional[Path] = None) -> Tuple[bool, Path]:
    """Write (or refresh) the managed override; returns (changed, target)."""
    target = user_launcher_path(app.desktop_id, home)
    if Path(app.path) == target and not file_contains_marker(target):
        raise RefusedWrite("refusing to overwrite unmanaged local desktop file", target)

    region = DesktopOverrideRegion(app)
    source = read_source_entry(Path(app.path))
    content, _ = region.upsert(source, env)

    current = read_text_exact(target) if target.exists() else None
    if current == content:
        log.debug("desktop override %s already in desired state", target)
        return False, target

    write_text_atomic(target, content)
    log.info("desktop override written: %s", target)
    if not region.verify(read_text_exact(target), env):
        raise ValidationFailure("desktop override did not validate after write", target)
    return True, target

def remove_override_if_present(path: Path) -> bool:
    """Delete `path` only when it carries the marker; True when something was removed."""
    if not path.exists() or not file_contains_marker(path):
        return False
    try:
        path.unlink()
    except OSError as e:
        raise IoFailure(f"failed to remove launcher: {e}", path) from e
    if path.exists():
        raise ValidationFailure("desktop override still present after removal", path)
    log.info("desktop override removed: %s", path)
    return True

def apply_desktop_override(app: LaunchDescriptor, env: Optional[List[str]],
                           home: Optional[Path] = None) -> Tuple[bool, Path]:
    if env is None:
        target = user_launcher_path(app.desktop_id, home)
        return remove_override_if_present(target), target
    return write_desktop_override(app, env, home)
