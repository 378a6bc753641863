"""Steam ``localconfig.vdf`` LaunchOptions patcher.

The file is edited as text: only the LaunchOptions value of one app is
rewritten (or one line / one block inserted), everything else is left byte
for byte. Our part of the value is bounded by two marker tokens::

    [env ]KAEDE_GPU_MANAGED=1 DRI_PRIME=1 ... KAEDE_GPU_MANAGED_END=1 %command% --user-args
"""
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .errors import NotFound, ParseFailure, ValidationFailure
from .models import GpuChoice
from .region import ManagedRegion, patch_file
from .utils import home_dir, is_steam_running

log = logging.getLogger(__name__)

START_MARKER = "KAEDE_GPU_MANAGED=1"
END_MARKER = "KAEDE_GPU_MANAGED_END=1"
COMMAND = "%command%"
APPS_PATH = ("UserLocalConfigStore", "Software", "Valve", "Steam", "apps")

Span = Tuple[int, int, int]     # key position, opening brace, closing brace

# --- tokenizer ---

def match_brace(text: str, open_pos: int, end: Optional[int] = None) -> int:
    """Offset of the `}` closing the `{` at `open_pos`.

    Quoted strings are opaque (braces inside them do not count) and may
    contain backslash-escaped quotes. Raises ParseFailure when the input ends
    before the block does.
    """
    end = len(text) if end is None else end
    if open_pos >= end or text[open_pos] != "{":
        raise ParseFailure(f"no opening brace at offset {open_pos}")
    depth = 0
    in_string = escaped = False
    for i in range(open_pos, end):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    raise ParseFailure(f"unbalanced braces: block at offset {open_pos} is never closed")

def _skip_ws(text: str, i: int, end: int) -> int:
    while i < end:
        if text[i].isspace() or text[i] == "\ufeff":
            i += 1
        elif text.startswith("//", i):
            nl = text.find("\n", i, end)
            i = end if nl < 0 else nl + 1
        else:
            break
    return i

def _read_token(text: str, i: int, end: int) -> Tuple[str, int, int, int]:
    """Token at `i` -> (token, content start, content end, next offset)."""
    if text[i] == '"':
        j = i + 1
        while j < end:
            if text[j] == "\\":
                j += 2
                continue
            if text[j] == '"':
                return text[i + 1:j], i + 1, j, j + 1
            j += 1
        raise ParseFailure(f"unterminated string at offset {i}")
    j = i
    while j < end and not text[j].isspace() and text[j] not in '{}"':
        j += 1
    return text[i:j], i, j, j

def iter_entries(text: str, start: int, end: int) -> Iterator[Tuple[str, int, str, int, int]]:
    """Direct children of a block body: (key, key_pos, kind, a, b).

    kind "block": a/b are the braces; kind "value": a/b bound the raw value text.
    """
    i = start
    while True:
        i = _skip_ws(text, i, end)
        if i >= end:
            return
        if text[i] in "{}":
            raise ParseFailure(f"unexpected {text[i]!r} at offset {i}")
        key_pos = i
        key, _, _, i = _read_token(text, i, end)
        i = _skip_ws(text, i, end)
        if i >= end:
            raise ParseFailure(f"key {key!r} has no value")
        if text[i] == "{":
            close = match_brace(text, i, end)
            yield key, key_pos, "block", i, close
            i = close + 1
        elif text[i] == "}":
            raise ParseFailure(f"key {key!r} has no value")
        else:
            _, a, b, i = _read_token(text, i, end)
            yield key, key_pos, "value", a, b
        # conditional suffix such as [$WIN32]
        j = i
        while j < end and text[j] in " \t":
            j += 1
        if j < end and text[j] == "[":
            close = text.find("]", j, end)
            i = end if close < 0 else close + 1

def find_child_block(text: str, key: str, start: int, end: int) -> Optional[Span]:
    want = key.lower()
    for k, pos, kind, a, b in iter_entries(text, start, end):
        if kind == "block" and k.lower() == want:
            return pos, a, b
    return None

def find_block_anywhere(text: str, key: str, start: int, end: int) -> Optional[Span]:
    want = key.lower()
    for k, pos, kind, a, b in iter_entries(text, start, end):
        if kind != "block":
            continue
        if k.lower() == want:
            return pos, a, b
        found = find_block_anywhere(text, key, a + 1, b)
        if found:
            return found
    return None

def find_child_value(text: str, key: str, start: int, end: int) -> Optional[Tuple[int, int, int]]:
    want = key.lower()
    for k, pos, kind, a, b in iter_entries(text, start, end):
        if kind == "value" and k.lower() == want:
            return pos, a, b
    return None

def find_apps_block(text: str) -> Optional[Span]:
    start, end = 0, len(text)
    span = None
    for key in APPS_PATH:
        span = find_child_block(text, key, start, end)
        if span is None:
            break
        start, end = span[1] + 1, span[2]
    if span is not None:
        return span
    log.warning("apps block not found at the canonical path; searching the whole file")
    return find_block_anywhere(text, "apps", 0, len(text))

def indentation_at(text: str, pos: int) -> str:
    line_start = text.rfind("\n", 0, pos) + 1
    i = line_start
    while i < pos and text[i] in " \t":
        i += 1
    return text[line_start:i]

# --- managed prefix ---

def strip_managed_prefix(value: str) -> str:
    """Remove a previously injected prefix and return the user's own tail."""
    start = value.find(START_MARKER)
    if start < 0:
        return value.strip()
    end_rel = value.find(END_MARKER, start)
    if end_rel < 0:
        # end marker lost: best effort, only the start token goes
        return (value[:start] + value[start + len(START_MARKER):]).strip()
    head = value[:start].rstrip()
    if head == "env" or head.endswith(" env"):
        head = head[:-3].rstrip()
    rest = value[end_rel + len(END_MARKER):].strip()
    return " ".join(p for p in (head, rest) if p)

def build_managed_prefix(env: List[str], use_env_wrapper: bool = False) -> str:
    wrapper = "env " if use_env_wrapper else ""
    return f"{wrapper}{START_MARKER} {' '.join(env)} {END_MARKER}"

def compose_launch_options(existing: Optional[str], prefix: Optional[str]) -> str:
    tail = strip_managed_prefix(existing or "")
    if prefix is None:
        return tail
    return f"{prefix.strip()} {tail or COMMAND}".strip()

def has_markers(value: Optional[str]) -> bool:
    return bool(value) and (START_MARKER in value or END_MARKER in value)

# --- region ---

class LaunchOptionsRegion(ManagedRegion):
    """The LaunchOptions leaf of apps/"<app_id>" in one localconfig.vdf."""

    def __init__(self, app_id: str, use_env_wrapper: bool = False):
        self.app_id = app_id
        self.use_env_wrapper = use_env_wrapper

    def _app_block(self, text: str) -> Tuple[Optional[Span], Optional[Span]]:
        apps = find_apps_block(text)
        if apps is None:
            return None, None
        return apps, find_child_block(text, self.app_id, apps[1] + 1, apps[2])

    def locate(self, text: str) -> Optional[Span]:
        return self._app_block(text)[1]

    def launch_options(self, text: str) -> Optional[str]:
        app = self.locate(text)
        if app is None:
            return None
        leaf = find_child_value(text, "LaunchOptions", app[1] + 1, app[2])
        return text[leaf[1]:leaf[2]] if leaf else None

    def upsert(self, text: str, env: List[str]) -> Tuple[str, bool]:
        return self._rewrite(text, build_managed_prefix(env, self.use_env_wrapper))

    def remove(self, text: str) -> Tuple[str, bool]:
        return self._rewrite(text, None)

    def verify(self, text: str, env: Optional[List[str]]) -> bool:
        value = self.launch_options(text)
        if env is None:
            return not has_markers(value)
        if value is None:
            return False
        prefix = build_managed_prefix(env, self.use_env_wrapper)
        return value == compose_launch_options(value, prefix) and value.startswith(prefix)

    def _rewrite(self, text: str, prefix: Optional[str]) -> Tuple[str, bool]:
        apps, app = self._app_block(text)
        if apps is None:
            log.warning("no apps block in localconfig")
            return text, False
        nl = "\r\n" if "\r\n" in text else "\n"

        if app is None:
            if prefix is None:
                return text, False
            app_indent = indentation_at(text, apps[0]) + "\t"
            value = compose_launch_options(None, prefix)
            lines = [
                f'{app_indent}"{self.app_id}"',
                f"{app_indent}{{",
                f'{app_indent}\t"LaunchOptions"\t\t"{value}"',
                f"{app_indent}}}",
            ]
            return _insert_before_close(text, apps[2], lines, nl), True

        leaf = find_child_value(text, "LaunchOptions", app[1] + 1, app[2])
        existing = text[leaf[1]:leaf[2]] if leaf else None
        if prefix is None and not has_markers(existing):
            return text, False
        value = compose_launch_options(existing, prefix)
        if existing is not None and value == existing:
            return text, False

        if leaf is None:
            if not value:
                return text, False
            line = f'{indentation_at(text, app[0])}\t"LaunchOptions"\t\t"{value}"'
            return _insert_before_close(text, app[2], [line], nl), True

        if not value:
            return _delete_leaf(text, leaf), True
        return text[:leaf[1]] + value + text[leaf[2]:], True

def _insert_before_close(text: str, close: int, lines: List[str], nl: str) -> str:
    line_start = text.rfind("\n", 0, close) + 1
    if not text[line_start:close].strip():
        return text[:line_start] + "".join(l + nl for l in lines) + text[line_start:]
    return text[:close] + nl + nl.join(lines) + nl + text[close:]

def _delete_leaf(text: str, leaf: Tuple[int, int, int]) -> str:
    key_pos, _, value_end = leaf
    line_start = text.rfind("\n", 0, key_pos) + 1
    nl = text.find("\n", value_end)
    line_end = len(text) if nl < 0 else nl + 1
    if not text[line_start:key_pos].strip() and not text[value_end + 1:line_end].strip():
        return text[:line_start] + text[line_end:]
    return text[:key_pos] + text[value_end + 1:]

# --- files ---

def steam_roots(home: Optional[Path] = None) -> List[Path]:
    h = home_dir(home)
    return [
        h / ".steam/steam",
        h / ".steam/root",
        h / ".local/share/Steam",
        h / ".var/app/com.valvesoftware.Steam/data/Steam",
    ]

def find_localconfig_files(home: Optional[Path] = None) -> List[Path]:
    out: List[Path] = []
    seen = set()
    for base in steam_roots(home):
        userdata = base / "userdata"
        try:
            users = sorted(userdata.iterdir())
        except OSError:
            continue
        for user in users:
            cfg = user / "config" / "localconfig.vdf"
            if not cfg.is_file():
                continue
            key = cfg.resolve()
            if key in seen:
                continue
            seen.add(key)
            out.append(cfg)
    return out

def apply_steam_launch_options(app_id: str, choice: GpuChoice, env: List[str],
                               use_env_wrapper: bool = False,
                               home: Optional[Path] = None,
                               files: Optional[List[Path]] = None) -> Tuple[bool, List[Path], List[str]]:
    """Sync LaunchOptions for `app_id` in every localconfig.vdf.

    Returns (changed_any, touched_files, warnings). Succeeds when at least one
    file held the app and validated after the write.
    """
    warnings: List[str] = []
    if is_steam_running():
        msg = "Steam is running; it may overwrite localconfig.vdf when it exits"
        log.warning(msg)
        warnings.append(msg)

    files = find_localconfig_files(home) if files is None else files
    log.debug("found %d Steam localconfig candidates", len(files))
    if not files:
        raise NotFound("no Steam localconfig.vdf files found")

    desired = None if choice.is_default else (env or [f"DRI_PRIME={choice.index}"])
    region = LaunchOptionsRegion(app_id, use_env_wrapper)
    matched, validated, changed = [], [], False
    unreadable: List[ParseFailure] = []
    for path in files:
        try:
            outcome = patch_file(path, region, desired)
        except ParseFailure as e:
            log.warning("skipping unparseable Steam config: %s", e)
            unreadable.append(e)
            continue
        changed = changed or outcome.changed
        if outcome.matched:
            matched.append(path)
        if outcome.validated:
            validated.append(path)
            log.info("Steam LaunchOptions for %s %s in %s", app_id,
                     "validated" if outcome.changed else "already in desired state", path)

    skipped = f"; {len(unreadable)} localconfig.vdf could not be parsed" if unreadable else ""
    if not matched:
        if unreadable:
            raise ParseFailure(f"Steam App ID {app_id} not found{skipped}", unreadable[0].path)
        raise NotFound(f"Steam App ID {app_id} not found in localconfig.vdf")
    if not validated:
        raise ValidationFailure(
            f"Steam App ID {app_id} was found but LaunchOptions validation failed{skipped}", matched[0])
    for e in unreadable:
        warnings.append(f"skipped unparseable {e.path}")
    return changed, validated, warnings
