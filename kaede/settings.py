import json
import logging
from typing import Dict
from pathlib import Path

from .models import GpuChoice
from .utils import config_home, write_text_atomic

log = logging.getLogger(__name__)

DEFAULTS = {
    "show_steam_apps": True,
    "show_heroic_apps": True,
    "show_flatpak_apps": True,
    "steam_env_wrapper": False,
}

def default_settings_file() -> Path:
    return config_home() / "kaede" / "settings.json"

def load_settings(settings_file: Path) -> Dict:
    settings = dict(DEFAULTS)
    settings["assignments"] = {}
    try:
        if settings_file.exists():
            data = json.loads(settings_file.read_text("utf-8"))
            if isinstance(data, dict):
                settings.update({k: bool(data.get(k, DEFAULTS[k])) for k in DEFAULTS})
                raw = data.get("assignments")
                if isinstance(raw, dict):
                    settings["assignments"] = {str(k): v for k, v in raw.items()}
    except (OSError, ValueError) as e:
        log.warning("ignoring unreadable settings %s: %s", settings_file, e)
    return settings

def save_settings(settings_file: Path, settings: dict) -> None:
    write_text_atomic(settings_file, json.dumps(settings, indent=2) + "\n")

def get_choice(settings: dict, desktop_id: str) -> GpuChoice:
    return GpuChoice.from_json(settings.get("assignments", {}).get(desktop_id))

def set_choice(settings: dict, desktop_id: str, choice: GpuChoice) -> None:
    assignments = settings.setdefault("assignments", {})
    if choice.is_default:
        assignments.pop(desktop_id, None)
    else:
        assignments[desktop_id] = choice.to_json()
