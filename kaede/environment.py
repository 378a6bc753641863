from typing import List, Optional

from .models import EnvironmentProfile, GpuDescriptor

NVIDIA_VARS = [
    ("__NV_PRIME_RENDER_OFFLOAD", "1"),
    ("__GLX_VENDOR_LIBRARY_NAME", "nvidia"),
    ("__VK_LAYER_NV_optimus", "NVIDIA_only"),
]
MESA_DRIVERS = ("amdgpu", "radeon", "i915", "iris", "nouveau")

# Every variable an override may set; Default clears exactly these.
MANAGED_ENV_KEYS = [
    "DRI_PRIME",
    "PRESSURE_VESSEL_IMPORT_VARS",
    "__NV_PRIME_RENDER_OFFLOAD",
    "__GLX_VENDOR_LIBRARY_NAME",
    "__VK_LAYER_NV_optimus",
    "MESA_VK_DEVICE_SELECT",
    "MESA_VK_DEVICE_SELECT_FORCE_DEFAULT_DEVICE",
]

def gpu_profile(gpu: Optional[GpuDescriptor]) -> EnvironmentProfile:
    if gpu is None:
        return EnvironmentProfile()
    driver = (gpu.driver or "").lower()
    hay = " ".join(s.lower() for s in (gpu.name, gpu.driver, gpu.renderer) if s)
    is_nvidia = driver == "nvidia" or "nvidia" in hay
    is_mesa = not is_nvidia and ("mesa" in hay or driver in MESA_DRIVERS)
    return EnvironmentProfile(
        is_nvidia=is_nvidia,
        is_mesa=is_mesa,
        mesa_device_selector=mesa_device_selector(gpu.pci_slot),
    )

def mesa_device_selector(pci_slot: Optional[str]) -> Optional[str]:
    """Map a PCI slot such as 01:00.0 or 0000:01:00.0 to pci-0000_01_00_0."""
    slot = (pci_slot or "").strip()
    if not slot:
        return None
    if slot.count(":") == 1:
        slot = f"0000:{slot}"
    return "pci-" + slot.replace(":", "_").replace(".", "_")

def build_env_pairs(index: int, gpu: Optional[GpuDescriptor], for_steam: bool = False) -> List[str]:
    """Ordered KEY=VALUE assignments that pin rendering to GPU `index`."""
    profile = gpu_profile(gpu)
    pairs = [f"DRI_PRIME={index}"]
    if profile.is_nvidia:
        pairs.extend(f"{k}={v}" for k, v in NVIDIA_VARS)
    if profile.is_mesa:
        if profile.mesa_device_selector:
            pairs.append(f"MESA_VK_DEVICE_SELECT={profile.mesa_device_selector}")
        if index == 0:
            pairs.append("MESA_VK_DEVICE_SELECT_FORCE_DEFAULT_DEVICE=1")
    if for_steam:
        names = ",".join(p.split("=", 1)[0] for p in pairs)
        pairs.append(f"PRESSURE_VESSEL_IMPORT_VARS={names}")
    return pairs

def env_pairs_to_dict(pairs: List[str]) -> dict:
    out = {}
    for pair in pairs:
        k, sep, v = pair.partition("=")
        if sep:
            out[k] = v
    return out

def is_steam_exec(exec_: str) -> bool:
    lower = exec_.lower()
    if "steam" not in lower:
        return False
    return "rungameid" in lower or "-applaunch" in lower or "steam://run" in lower
