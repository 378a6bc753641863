import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .environment import is_steam_exec
from .models import (FlatpakSurface, HeroicSurface, LaunchDescriptor,
                     NativeSurface, SteamSurface, Surface)
from .utils import home_dir

log = logging.getLogger(__name__)

FIELD_CODES = ("%f", "%F", "%u", "%U", "%i", "%c", "%k")
FLATPAK_EXPORTS = "/flatpak/exports/share/applications"

_STEAM_URI = re.compile(r"steam://rungameid/(\d+)")
_FLATPAK_ID = re.compile(r"^[A-Za-z0-9._]+$")

def application_dirs(home: Optional[Path] = None) -> List[Path]:
    """Lowest precedence first; later directories win on id collision."""
    h = home_dir(home)
    return [
        Path("/usr/share/applications"),
        Path("/usr/local/share/applications"),
        h / ".local/share/applications",
        Path("/var/lib/flatpak/exports/share/applications"),
        h / ".local/share/flatpak/exports/share/applications",
    ]

def scan_desktop_entries(dirs: Optional[Iterable[Path]] = None) -> List[LaunchDescriptor]:
    by_id: Dict[str, LaunchDescriptor] = {}
    for d in (application_dirs() if dirs is None else dirs):
        d = Path(d)
        if not d.is_dir():
            continue
        try:
            entries = sorted(d.iterdir())
        except OSError as e:
            log.debug("skipping %s: %s", d, e)
            continue
        for p in entries:
            if p.suffix != ".desktop" or not p.is_file():
                continue
            app = parse_desktop_file(p)
            if app is not None:
                by_id[app.desktop_id] = app
    apps = sorted(by_id.values(), key=lambda a: a.name.lower())
    log.info("scanned %d launchable applications", len(apps))
    return apps

def read_desktop_entry(text: str) -> Dict[str, str]:
    """Key/value pairs of the [Desktop Entry] group only (first value wins)."""
    fields: Dict[str, str] = {}
    in_entry = False
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("[") and line.endswith("]"):
            in_entry = line == "[Desktop Entry]"
            continue
        if not in_entry or "=" not in line:
            continue
        key, value = line.split("=", 1)
        fields.setdefault(key.strip(), value.strip())
    return fields

def parse_desktop_file(path: Path) -> Optional[LaunchDescriptor]:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        log.debug("unreadable desktop file %s: %s", path, e)
        return None

    f = read_desktop_entry(text)
    if f.get("NoDisplay", "").lower() == "true" or f.get("Hidden", "").lower() == "true":
        return None
    if f.get("Type", "") != "Application":
        return None

    exec_ = strip_field_codes(f.get("Exec", ""))
    return LaunchDescriptor(
        desktop_id=path.name,
        path=path,
        name=f.get("Name") or "Unnamed Application",
        icon=f.get("Icon") or None,
        exec=exec_,
        surface=classify(path, exec_, f.get("X-Flatpak")),
    )

def strip_field_codes(exec_: str) -> str:
    for code in FIELD_CODES:
        exec_ = exec_.replace(code, "")
    return " ".join(exec_.split())

def classify(path: Path, exec_: str, x_flatpak: Optional[str] = None) -> Surface:
    steam_id = steam_app_id_from_exec(exec_)
    if steam_id or is_steam_exec(exec_):
        return SteamSurface(app_id=steam_id)

    heroic = heroic_game_from_exec(exec_)
    if heroic is not None:
        return HeroicSurface(platform=heroic[0], app_name=heroic[1])
    if "heroic://launch" in exec_:
        return HeroicSurface(platform=None, app_name=None)

    if is_flatpak_entry(path, exec_):
        app_id = x_flatpak or flatpak_app_id_from_exec(exec_) or path.stem
        return FlatpakSurface(app_id=app_id or None)

    return NativeSurface()

def steam_app_id_from_exec(exec_: str) -> Optional[str]:
    m = _STEAM_URI.search(exec_)
    if m:
        return m.group(1)
    parts = exec_.split()
    if "-applaunch" in parts:
        i = parts.index("-applaunch")
        if i + 1 < len(parts) and parts[i + 1].isdigit():
            return parts[i + 1]
    return None

def heroic_game_from_exec(exec_: str) -> Optional[Tuple[Optional[str], str]]:
    """(platform, app_name) from either heroic:// URI form; platform may be None."""
    marker = "heroic://launch/"
    idx = exec_.find(marker)
    if idx >= 0:
        tail = exec_[idx + len(marker):]
        parts = re.split(r"[/? \"']", tail)
        if len(parts) >= 2 and parts[0].strip() and parts[1].strip():
            return parts[0].strip(), parts[1].strip()

    marker = "heroic://launch?"
    idx = exec_.find(marker)
    if idx < 0:
        return None
    rest = exec_[idx + len(marker):].split()
    query = rest[0] if rest else ""
    app_name = runner = None
    for pair in query.strip("\"'").split("&"):
        k, sep, v = pair.partition("=")
        v = v.strip("\"'")
        if not sep or not v:
            continue
        if k == "appName":
            app_name = v
        elif k == "runner":
            runner = v
    if app_name is None:
        return None
    return runner, app_name

def is_flatpak_entry(path: Path, exec_: str) -> bool:
    return FLATPAK_EXPORTS in path.as_posix() or "flatpak run" in exec_

def looks_like_flatpak_app_id(token: str) -> bool:
    return "." in token and bool(_FLATPAK_ID.match(token))

def flatpak_app_id_from_exec(exec_: str) -> Optional[str]:
    parts = exec_.split()
    if "flatpak" not in exec_ or "run" not in parts:
        return None
    for token in parts[parts.index("run") + 1:]:
        if token.startswith("-"):
            continue
        if looks_like_flatpak_app_id(token):
            return token
    return None

def filter_visible(apps: List[LaunchDescriptor], settings: dict, query: str = "") -> List[LaunchDescriptor]:
    hidden = set()
    if not settings.get("show_steam_apps", True):
        hidden.add("steam")
    if not settings.get("show_heroic_apps", True):
        hidden.add("heroic")
    if not settings.get("show_flatpak_apps", True):
        hidden.add("flatpak")
    q = query.strip().lower()
    return [a for a in apps
            if a.kind not in hidden and (not q or q in a.name.lower())]
