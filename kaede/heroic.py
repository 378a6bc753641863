"""Heroic per-game JSON config merger.

Heroic keeps env overrides in two places and kaede keeps both in sync:

* top-level ``envVariables``: an object of strings or an array of
  ``{"name", "value"}`` items, whichever the file already uses;
* ``<appName>.enviromentOptions``: an array of ``{"key", "value"}`` items
  (the misspelling is Heroic's own).

Only the keys in ``MANAGED_KEYS`` are ever added or removed.
"""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .environment import MANAGED_ENV_KEYS, env_pairs_to_dict
from .errors import NotFound, ParseFailure, ValidationFailure
from .models import GpuChoice
from .region import ManagedRegion, patch_file
from .utils import home_dir, read_text_exact

log = logging.getLogger(__name__)

MARKER_KEY = "KAEDE_GPU_MANAGED"
MANAGED_KEYS = MANAGED_ENV_KEYS + [MARKER_KEY]
ENV_FIELD = "envVariables"
GAME_ENV_FIELD = "enviromentOptions"

def heroic_config_dirs(home: Optional[Path] = None) -> List[Path]:
    h = home_dir(home)
    return [
        h / ".config/heroic/GamesConfig",
        h / ".var/app/com.heroicgameslauncher.hgl/config/heroic/GamesConfig",
    ]

def find_config_candidates(app_name: str, dirs: Optional[List[Path]] = None) -> List[Path]:
    """Every GamesConfig/*.json, files named after the game first."""
    out: List[Path] = []
    for base in (heroic_config_dirs() if dirs is None else dirs):
        try:
            entries = sorted(Path(base).iterdir())
        except OSError:
            continue
        out.extend(p for p in entries if p.suffix == ".json" and p.is_file())
    seen = set()
    unique = []
    for p in out:
        if p not in seen:
            seen.add(p)
            unique.append(p)
    unique.sort(key=lambda p: 0 if p.stem.lower() == app_name.lower() else 1)
    return unique

def config_matches_game(data: dict, raw: str, path: Path, app_name: str) -> bool:
    want = app_name.lower()
    if path.stem.strip().lower() == want:
        return True
    for field in ("appName", "gameId", "title"):
        v = data.get(field)
        if isinstance(v, str) and v.lower() == want:
            return True
    return app_name in raw

def desired_env(env: Optional[List[str]]) -> Dict[str, str]:
    desired = env_pairs_to_dict(env or [])
    if desired:
        desired[MARKER_KEY] = "1"
    return desired

# --- envVariables shapes ---

@dataclass
class EnvAsObject:
    items: dict

    def update(self, desired: Dict[str, str]) -> bool:
        changed = False
        for k, v in desired.items():
            if self.items.get(k) != v:
                self.items[k] = v
                changed = True
        for k in MANAGED_KEYS:
            if k not in desired and k in self.items:
                del self.items[k]
                changed = True
        return changed

    def holds(self, desired: Dict[str, str]) -> bool:
        if any(self.items.get(k) != v for k, v in desired.items()):
            return False
        return not any(k in self.items for k in MANAGED_KEYS if k not in desired)

@dataclass
class EnvAsArray:
    items: list

    @staticmethod
    def _name(item) -> Optional[str]:
        return item.get("name") if isinstance(item, dict) else None

    def update(self, desired: Dict[str, str]) -> bool:
        changed = False
        for k, v in desired.items():
            found = False
            for item in self.items:
                if self._name(item) == k:
                    found = True
                    if item.get("value") != v:
                        item["value"] = v
                        changed = True
            if not found:
                self.items.append({"name": k, "value": v})
                changed = True
        keep = [item for item in self.items
                if not (self._name(item) in MANAGED_KEYS and self._name(item) not in desired)]
        if len(keep) != len(self.items):
            self.items[:] = keep
            changed = True
        return changed

    def holds(self, desired: Dict[str, str]) -> bool:
        present = {}
        for item in self.items:
            name = self._name(item)
            if name is not None:
                present[name] = item.get("value")
        if any(present.get(k) != v for k, v in desired.items()):
            return False
        return not any(k in present for k in MANAGED_KEYS if k not in desired)

def resolve_env_shape(root: dict, create: bool):
    value = root.get(ENV_FIELD)
    if isinstance(value, dict):
        return EnvAsObject(value)
    if isinstance(value, list):
        return EnvAsArray(value)
    if not create:
        return None
    root[ENV_FIELD] = {}
    return EnvAsObject(root[ENV_FIELD])

# --- enviromentOptions ---

def parse_env_option(item) -> Optional[Tuple[str, str]]:
    if isinstance(item, str):
        k, sep, v = item.partition("=")
        return (k, v) if sep else None
    if not isinstance(item, dict):
        return None
    k = item.get("key") if isinstance(item.get("key"), str) else item.get("name")
    v = item.get("value")
    if isinstance(k, str) and isinstance(v, str):
        return k, v
    return None

def _is_managed_option(item) -> bool:
    parsed = parse_env_option(item)
    return parsed is not None and parsed[0] in MANAGED_KEYS

def update_game_options(root: dict, app_name: str, desired: Dict[str, str]) -> bool:
    game = root.get(app_name)
    if not isinstance(game, dict):
        if not desired:
            return False
        game = root[app_name] = {}
    current = game.get(GAME_ENV_FIELD)
    existing = current if isinstance(current, list) else []
    new = [item for item in existing if not _is_managed_option(item)]
    new.extend({"key": k, "value": v} for k, v in desired.items())
    if current is None and not new:
        return False
    if new == current:
        return False
    game[GAME_ENV_FIELD] = new
    return True

def game_options_hold(root: dict, app_name: str, desired: Dict[str, str]) -> bool:
    game = root.get(app_name)
    if not isinstance(game, dict):
        return not desired
    arr = game.get(GAME_ENV_FIELD)
    if not isinstance(arr, list):
        return not desired
    present = dict(p for p in (parse_env_option(i) for i in arr) if p)
    if any(present.get(k) != v for k, v in desired.items()):
        return False
    return not any(k in present for k in MANAGED_KEYS if k not in desired)

# --- region ---

class HeroicEnvRegion(ManagedRegion):

    def __init__(self, app_name: str):
        self.app_name = app_name

    def load(self, raw: str, path: Path) -> dict:
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ParseFailure(f"invalid Heroic config JSON: {e}", path) from e
        if not isinstance(data, dict):
            raise ParseFailure("Heroic game config root is not a JSON object", path)
        return data

    def dump(self, doc: dict) -> str:
        return json.dumps(doc, indent=2, ensure_ascii=False)

    def locate(self, doc: dict):
        return doc

    def upsert(self, doc: dict, env: List[str]) -> Tuple[dict, bool]:
        return self._apply(doc, desired_env(env))

    def remove(self, doc: dict) -> Tuple[dict, bool]:
        return self._apply(doc, {})

    def _apply(self, doc: dict, desired: Dict[str, str]) -> Tuple[dict, bool]:
        changed = False
        shape = resolve_env_shape(doc, create=bool(desired))
        if shape is not None:
            changed = shape.update(desired)
        changed = update_game_options(doc, self.app_name, desired) or changed
        return doc, changed

    def verify(self, doc: dict, env: Optional[List[str]]) -> bool:
        desired = desired_env(env)
        shape = resolve_env_shape(doc, create=False)
        top_ok = shape.holds(desired) if shape is not None else not desired
        return top_ok and game_options_hold(doc, self.app_name, desired)

def apply_heroic_launch_env(platform: str, app_name: str, choice: GpuChoice, env: List[str],
                            home: Optional[Path] = None,
                            dirs: Optional[List[Path]] = None) -> Tuple[bool, List[Path]]:
    """Sync the managed env keys into the game's Heroic config(s).

    Returns (changed_any, validated_files).
    """
    desired = None if choice.is_default else env
    dirs = heroic_config_dirs(home) if dirs is None else dirs
    files = find_config_candidates(app_name, dirs)
    if not files:
        raise NotFound(f"Heroic config not found for app {app_name}")

    region = HeroicEnvRegion(app_name)
    matched: List[Path] = []
    validated: List[Path] = []
    changed = False
    unreadable: List[ParseFailure] = []
    for path in files:
        raw = read_text_exact(path)
        name_hit = path.stem.lower() == app_name.lower() or app_name in raw
        try:
            data = region.load(raw, path)
        except ParseFailure as e:
            if name_hit:
                unreadable.append(e)
            log.warning("skipping unparseable Heroic config %s", path)
            continue
        if not config_matches_game(data, raw, path, app_name):
            log.debug("Heroic config %s does not match %s", path, app_name)
            continue

        matched.append(path)
        try:
            outcome = patch_file(path, region, desired, raw=raw)
        except ParseFailure as e:
            log.warning("skipping Heroic config: %s", e)
            unreadable.append(e)
            continue
        changed = changed or outcome.changed
        if outcome.validated:
            validated.append(path)
            log.info("Heroic env for %s/%s %s in %s", platform, app_name,
                     "updated" if outcome.changed else "already in desired state", path)

    if not validated and unreadable:
        raise ParseFailure(f"Heroic config for {app_name} could not be parsed", unreadable[0].path)
    if not matched:
        log.warning("Heroic config candidates found but none matches %s", app_name)
        raise NotFound(f"Heroic game {app_name} not matched in configs")
    if not validated:
        raise ValidationFailure(f"Heroic game {app_name} found but env validation failed", matched[0])
    return changed, validated
