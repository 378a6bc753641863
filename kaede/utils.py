import base64
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

import psutil

from .errors import IoFailure

log = logging.getLogger(__name__)

TOOL_TIMEOUT = 5.0

def b64url_encode(s: str) -> str:
    return base64.urlsafe_b64encode(s.encode()).decode().rstrip("=")

def b64url_decode(s: str) -> str:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode()).decode()

def home_dir(home: Optional[Union[str, Path]] = None) -> Path:
    if home is not None:
        return Path(home)
    return Path(os.environ.get("HOME") or "/tmp")

def config_home() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    return Path(xdg) if xdg else home_dir() / ".config"

def run_tool(argv: List[str], env_extra: Optional[Dict[str, str]] = None,
             timeout: float = TOOL_TIMEOUT) -> Optional[str]:
    """Run an optional helper and return its stdout, or None if it is missing or fails."""
    env = None
    if env_extra:
        env = os.environ.copy()
        env.update(env_extra)
    try:
        proc = subprocess.run(argv, capture_output=True, text=True, env=env,
                              timeout=timeout, check=False)
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("%s unavailable: %s", argv[0], e)
        return None
    if proc.returncode != 0:
        log.debug("%s exited with %s", argv[0], proc.returncode)
        return None
    return proc.stdout

def is_process_running(name: str) -> bool:
    for p in psutil.process_iter(["name"]):
        try:
            if (p.info.get("name") or "") == name:
                return True
        except psutil.Error:
            continue
    return False

def is_steam_running() -> bool:
    return is_process_running("steam")

# --- foreign-file I/O ---
# Text is read and written with surrogateescape and without newline
# translation so bytes outside the edited span survive unchanged.

def read_text_exact(path: Path) -> str:
    try:
        with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
            return f.read()
    except OSError as e:
        raise IoFailure(f"failed to read: {e}", path) from e

def write_text_atomic(path: Path, content: str) -> None:
    path = Path(path)
    tmp = path.with_name(f".{path.name}.kaede.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
            f.write(content)
        if path.exists():
            shutil.copymode(path, tmp)
        os.replace(tmp, path)
    except OSError as e:
        try:
            if tmp.exists():
                tmp.unlink()
        except OSError:
            pass
        raise IoFailure(f"failed to write: {e}", path) from e

def backup_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".kaede.bak")

def write_backup_if_missing(path: Path, content: str) -> Optional[Path]:
    """Write `<name>.kaede.bak` once; never overwrite an existing backup."""
    backup = backup_path_for(path)
    if backup.exists():
        return None
    try:
        with open(backup, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
            f.write(content)
    except OSError as e:
        raise IoFailure(f"failed to write backup: {e}", backup) from e
    log.info("backup created: %s", backup)
    return backup
