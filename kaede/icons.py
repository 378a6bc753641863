import io
import logging
from pathlib import Path
from typing import List, Optional

from PIL import Image

from .utils import home_dir

log = logging.getLogger(__name__)

THUMB_SIZE = 64
RASTER_EXTS = (".png", ".xpm", ".jpg", ".jpeg", ".webp")

def icon_theme_dirs(home: Optional[Path] = None) -> List[Path]:
    h = home_dir(home)
    return [
        h / ".local/share/icons/hicolor",
        h / ".local/share/flatpak/exports/share/icons/hicolor",
        Path("/var/lib/flatpak/exports/share/icons/hicolor"),
        Path("/usr/share/icons/hicolor"),
    ]

def pixmap_dirs() -> List[Path]:
    return [Path("/usr/share/pixmaps")]

def icon_candidates(name: str, home: Optional[Path] = None) -> List[Path]:
    """Every raster file for icon `name`, any size; absolute names are taken as-is."""
    p = Path(name)
    if p.is_absolute():
        return [p] if p.is_file() else []

    out: List[Path] = []
    for theme in icon_theme_dirs(home):
        if not theme.is_dir():
            continue
        for size_dir in sorted(theme.iterdir()):
            apps = size_dir / "apps"
            for ext in RASTER_EXTS:
                f = apps / f"{name}{ext}"
                if f.is_file():
                    out.append(f)
    for d in pixmap_dirs():
        for ext in RASTER_EXTS:
            f = d / f"{name}{ext}"
            if f.is_file():
                out.append(f)
    return out

def pick_largest_icon(candidates: List[Path]) -> Optional[Path]:
    best = None
    best_area = -1
    for f in candidates:
        try:
            with Image.open(f) as im:
                w, h = im.size
        except (OSError, ValueError):
            continue
        if w * h > best_area:
            best, best_area = f, w * h
    return best

def resolve_icon(name: Optional[str], home: Optional[Path] = None) -> Optional[Path]:
    if not name:
        return None
    return pick_largest_icon(icon_candidates(name, home))

def thumbnail_png(path: Path, size: int = THUMB_SIZE) -> Optional[bytes]:
    try:
        with Image.open(path) as im:
            im = im.convert("RGBA")
            im.thumbnail((size, size))
            buf = io.BytesIO()
            im.save(buf, format="PNG")
            return buf.getvalue()
    except (OSError, ValueError) as e:
        log.debug("cannot thumbnail %s: %s", path, e)
        return None

def placeholder_svg(label: str, size: int = THUMB_SIZE) -> str:
    letter = (label.strip()[:1] or "?").upper()
    return f"""
    <svg xmlns="http://www.w3.org/2000/svg" width="{size}" height="{size}">
      <rect width="100%" height="100%" rx="10" fill="#1f2630"/>
      <text x="50%" y="50%" fill="#e0e6ee" font-size="{size // 2}" text-anchor="middle" dominant-baseline="central">
        {letter}
      </text>
    </svg>
    """
