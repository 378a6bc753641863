import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import GpuChoice, GpuDescriptor
from .utils import run_tool

log = logging.getLogger(__name__)

DRM_CLASS = Path("/sys/class/drm")
DEV_DRI = Path("/dev/dri")

GPU_CLASS_TAGS = ("VGA compatible controller", "3D controller", "Display controller")

def detect_gpus(drm_dir: Path = DRM_CLASS, dev_dri: Path = DEV_DRI) -> List[GpuDescriptor]:
    """Enumerate render-capable cards and give each a stable DRI_PRIME index.

    Indices follow the numeric suffix of the DRM card name. Every helper
    lookup is optional: a missing tool or unreadable sysfs file just leaves
    the corresponding field empty.
    """
    lspci = read_lspci_gpu_names()
    cards: List[GpuDescriptor] = []

    for card in list_cards(drm_dir):
        device = drm_dir / card / "device"
        slot = read_pci_slot(device)
        cards.append(GpuDescriptor(
            index=-1,
            card=card,
            name=lookup_pci_name(lspci, slot) or card,
            driver=read_driver_name(device),
            pci_slot=slot,
            render_node=read_render_node(device),
        ))

    cards.sort(key=lambda g: card_number(g.card))

    fallback = read_render_nodes_from_dev(dev_dri)
    for idx, gpu in enumerate(cards):
        if gpu.render_node is None and idx < len(fallback):
            gpu.render_node = fallback[idx]

    for idx, gpu in enumerate(cards):
        gpu.index = idx
        gpu.renderer = detect_renderer(idx)
        log.info("gpu %d: %s driver=%s slot=%s node=%s renderer=%s",
                 idx, gpu.name, gpu.driver, gpu.pci_slot, gpu.render_node, gpu.renderer)
    return cards

def list_cards(drm_dir: Path) -> List[str]:
    try:
        names = os.listdir(drm_dir)
    except OSError:
        return []
    # card0-DP-1 and friends are connectors, not devices
    return [n for n in names if n.startswith("card") and "-" not in n]

def card_number(card: str) -> Tuple[int, int]:
    suffix = card[len("card"):] if card.startswith("card") else card
    if suffix.isdigit():
        return (0, int(suffix))
    return (1, 0)

def read_driver_name(device: Path) -> Optional[str]:
    try:
        target = os.readlink(device / "driver")
    except OSError:
        return None
    return os.path.basename(target.rstrip("/")) or None

def read_pci_slot(device: Path) -> Optional[str]:
    try:
        uevent = (device / "uevent").read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    for line in uevent.splitlines():
        if line.startswith("PCI_SLOT_NAME="):
            slot = line.split("=", 1)[1].strip()
            return slot or None
    return None

def read_render_node(device: Path) -> Optional[str]:
    try:
        entries = sorted(os.listdir(device / "drm"))
    except OSError:
        return None
    for node in entries:
        if node.startswith("renderD"):
            return f"/dev/dri/{node}"
    return None

def read_render_nodes_from_dev(dev_dri: Path) -> List[str]:
    try:
        names = os.listdir(dev_dri)
    except OSError:
        return []
    return sorted(f"/dev/dri/{n}" for n in names if n.startswith("renderD"))

def read_lspci_gpu_names() -> Dict[str, str]:
    out = run_tool(["lspci", "-nn"])
    names: Dict[str, str] = {}
    if not out:
        return names
    for line in out.splitlines():
        if not any(tag in line for tag in GPU_CLASS_TAGS):
            continue
        parts = line.split(" ", 1)
        slot = parts[0].strip()
        if slot:
            names[slot] = parts[1].strip() if len(parts) > 1 else line
    return names

def lookup_pci_name(names: Dict[str, str], slot: Optional[str]) -> Optional[str]:
    if not slot:
        return None
    if slot in names:
        return names[slot]
    # sysfs reports 0000:01:00.0, lspci without -D prints 01:00.0
    if slot.count(":") == 2:
        return names.get(slot.split(":", 1)[1])
    return names.get(f"0000:{slot}")

def detect_renderer(index: int) -> Optional[str]:
    hint = {"DRI_PRIME": str(index)}
    out = run_tool(["glxinfo", "-B"], env_extra=hint)
    if out:
        for line in out.splitlines():
            if line.startswith("OpenGL renderer string:"):
                return line.split(":", 1)[1].strip() or None
    return detect_renderer_vulkan(index)

def detect_renderer_vulkan(index: int) -> Optional[str]:
    out = run_tool(["vulkaninfo", "--summary"], env_extra={"DRI_PRIME": str(index)})
    if not out:
        return None
    lines = [l.strip() for l in out.splitlines()]
    for line in lines:
        if line.startswith("deviceName") and "=" in line:
            return line.split("=", 1)[1].strip() or None
    for line in lines:
        if line.startswith("GPU") and ":" in line:
            return line
    return None

# --- display labels ---

def pretty_gpu_name(gpu: GpuDescriptor) -> str:
    source = gpu.renderer if gpu.renderer and gpu.renderer.strip() else gpu.name
    cleaned = source.strip()
    if ":" in cleaned:
        cleaned = cleaned.split(":", 1)[1].strip()
    for noise in ("(TM)", "(tm)", "(R)", "(r)", "Corporation", "Inc."):
        cleaned = cleaned.replace(noise, "")
    for splitter in (" (", ", ", " [", " / "):
        if splitter in cleaned:
            cleaned = cleaned.split(splitter, 1)[0].strip()
    pos = cleaned.find("Series")
    if pos >= 0:
        cleaned = cleaned[:pos + len("Series")].strip()
    compact = " ".join(cleaned.split())
    return compact or f"GPU {gpu.index}"

def _compact_default_name(name: str) -> str:
    out = name
    for term in ("Radeon", "GeForce", "Graphics", "Series", "Integrated",
                 "Discrete", "AMD", "NVIDIA", "Intel"):
        out = out.replace(term, "")
    return " ".join(out.split()) or name

def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max(max_chars - 3, 0)] + "..."

def default_gpu_hint(gpus: List[GpuDescriptor]) -> str:
    first = next((g for g in gpus if g.index == 0), gpus[0] if gpus else None)
    name = pretty_gpu_name(first) if first else "System"
    return _truncate(_compact_default_name(name), 18)

def gpu_by_index(gpus: List[GpuDescriptor], index: Optional[int]) -> Optional[GpuDescriptor]:
    if index is None:
        return None
    return next((g for g in gpus if g.index == index), None)

def choice_label(gpus: List[GpuDescriptor], choice: GpuChoice) -> str:
    if choice.is_default:
        return f"Default GPU ({default_gpu_hint(gpus)})"
    gpu = gpu_by_index(gpus, choice.index)
    if gpu is None:
        return choice.label()
    return f"{pretty_gpu_name(gpu)} (#{gpu.index})"

def build_gpu_choices(gpus: List[GpuDescriptor]) -> List[Tuple[str, GpuChoice]]:
    choices = [(choice_label(gpus, GpuChoice.default()), GpuChoice.default())]
    for gpu in gpus:
        choices.append((f"{pretty_gpu_name(gpu)} (#{gpu.index})", GpuChoice.gpu(gpu.index)))
    return choices
