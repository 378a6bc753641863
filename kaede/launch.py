import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .desktop import apply_desktop_override, remove_override_if_present, user_launcher_path
from .environment import MANAGED_ENV_KEYS, build_env_pairs, env_pairs_to_dict, is_steam_exec
from .errors import ExternalToolFailure, ValidationFailure
from .gpu import gpu_by_index
from .heroic import apply_heroic_launch_env
from .models import (GpuChoice, GpuDescriptor, LaunchDescriptor, OverrideResult)
from .steam import apply_steam_launch_options

log = logging.getLogger(__name__)

FLATPAK_TIMEOUT = 30

def resolve_surface(app: LaunchDescriptor) -> Tuple[str, List[str]]:
    """Pick the surface whose patcher runs; warnings note every fall-through."""
    warnings: List[str] = []
    s = app.surface
    if s.kind == "steam":
        if s.app_id:
            return "steam", warnings
        warnings.append(f"{app.desktop_id}: Steam game without app id, falling back")
    if s.kind == "heroic":
        if s.platform and s.app_name:
            return "heroic", warnings
        warnings.append(f"{app.desktop_id}: Heroic game without platform/app name, falling back")
    if s.kind == "flatpak":
        if s.app_id:
            return "flatpak", warnings
        warnings.append(f"{app.desktop_id}: Flatpak app without app id, falling back")
    return "native", warnings

def apply_launcher_override(app: LaunchDescriptor, choice: GpuChoice, gpus: List[GpuDescriptor], *,
                            use_env_wrapper: bool = False,
                            home: Optional[Path] = None) -> OverrideResult:
    surface, warnings = resolve_surface(app)
    for w in warnings:
        log.warning(w)

    env: Optional[List[str]] = None
    if not choice.is_default:
        for_steam = surface == "steam" or (surface == "native" and is_steam_exec(app.exec))
        env = build_env_pairs(choice.index, gpu_by_index(gpus, choice.index), for_steam=for_steam)
    log.info("applying %s override for %s: %s env=%s", surface, app.desktop_id, choice.label(), env)

    result = OverrideResult(surface=surface, warnings=warnings)
    if surface == "steam":
        changed, files, steam_warnings = apply_steam_launch_options(
            app.surface.app_id, choice, env or [], use_env_wrapper=use_env_wrapper, home=home)
        result.targets = [str(p) for p in files]
        result.warnings.extend(steam_warnings)
    elif surface == "heroic":
        changed, files = apply_heroic_launch_env(
            app.surface.platform, app.surface.app_name, choice, env or [], home=home)
        result.targets = [str(p) for p in files]
    elif surface == "flatpak":
        changed = apply_flatpak_override(app.surface.app_id, env)
        result.targets = [f"flatpak:{app.surface.app_id}"]
    else:
        changed, target = apply_desktop_override(app, env, home)
        result.targets = [str(target)]

    result.changed = changed
    # stale native override from an earlier fall-through
    if surface != "native" and remove_override_if_present(user_launcher_path(app.desktop_id, home)):
        result.changed = True
    return result

# --- flatpak ---

def flatpak_override_args(app_id: str, env: Optional[List[str]]) -> List[str]:
    argv = ["flatpak", "override", "--user"]
    desired = env_pairs_to_dict(env or [])
    argv.extend(f"--env={k}={v}" for k, v in desired.items())
    argv.extend(f"--unset-env={k}" for k in MANAGED_ENV_KEYS if k not in desired)
    argv.append(app_id)
    return argv

def _run_flatpak(argv: List[str], app_id: str) -> str:
    try:
        proc = subprocess.run(argv, capture_output=True, text=True,
                              timeout=FLATPAK_TIMEOUT, check=False)
    except (OSError, subprocess.SubprocessError) as e:
        raise ExternalToolFailure(f"failed to execute {' '.join(argv[:3])} for {app_id}: {e}") from e
    if proc.returncode != 0:
        detail = (proc.stderr or "").strip()
        raise ExternalToolFailure(
            f"{' '.join(argv[:3])} failed for {app_id} (exit {proc.returncode}) {detail}".strip())
    return proc.stdout or ""

def parse_override_environment(text: str) -> Dict[str, str]:
    env: Dict[str, str] = {}
    in_env = False
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("[") and line.endswith("]"):
            in_env = line == "[Environment]"
            continue
        if in_env and "=" in line:
            k, v = line.split("=", 1)
            env[k.strip()] = v.strip()
    return env

def read_flatpak_override_env(app_id: str) -> Dict[str, str]:
    return parse_override_environment(
        _run_flatpak(["flatpak", "override", "--user", "--show", app_id], app_id))

def flatpak_env_holds(current: Dict[str, str], env: Optional[List[str]]) -> bool:
    desired = env_pairs_to_dict(env or [])
    if any(current.get(k) != v for k, v in desired.items()):
        return False
    return not any(current.get(k) for k in MANAGED_ENV_KEYS if k not in desired)

def apply_flatpak_override(app_id: str, env: Optional[List[str]]) -> bool:
    """Set (env) or clear (None) the managed keys in the user's Flatpak override."""
    before = read_flatpak_override_env(app_id)
    if flatpak_env_holds(before, env):
        log.debug("flatpak override for %s already in desired state", app_id)
        return False

    _run_flatpak(flatpak_override_args(app_id, env), app_id)
    log.info("flatpak override updated for %s", app_id)
    if not flatpak_env_holds(read_flatpak_override_env(app_id), env):
        raise ValidationFailure(f"flatpak override for {app_id} did not validate")
    return True
