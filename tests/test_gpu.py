#!/usr/bin/env python3
"""GPU enumeration against a fake sysfs tree; helper tools are faked."""
import os
import shutil
import tempfile
from pathlib import Path

import kaede.gpu as G
from kaede.models import GpuChoice, GpuDescriptor

LSPCI = """\
00:02.0 VGA compatible controller [0300]: Intel Corporation Alder Lake-P GT2 [Iris Xe Graphics] [8086:46a6]
00:1f.3 Audio device [0403]: Intel Corporation Alder Lake PCH-P HD Audio [8086:51c8]
01:00.0 3D controller [0302]: NVIDIA Corporation GA107M [GeForce RTX 3050 Mobile] [10de:25a2]
"""

def _touch(p: Path, data: str = ""):
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(data, encoding="utf-8")

def _card(drm: Path, name: str, slot: str, driver: str, render: str):
    device = drm / name / "device"
    _touch(device / "uevent", f"DRIVER={driver}\nPCI_SLOT_NAME={slot}\n")
    (device / "drm" / render).mkdir(parents=True)
    drivers = drm.parent / "drivers" / driver
    drivers.mkdir(parents=True, exist_ok=True)
    os.symlink(drivers, device / "driver")

def _fake_tools(outputs):
    calls = []
    def run_tool(argv, env_extra=None, timeout=5):
        calls.append((argv, env_extra))
        return outputs.get(argv[0])
    return run_tool, calls

def test_detect_gpus_dense_indices():
    tmp = Path(tempfile.mkdtemp(prefix="kaede_gpu_"))
    saved = G.run_tool
    fake, calls = _fake_tools({"lspci": LSPCI})
    G.run_tool = fake
    try:
        drm = tmp / "drm"
        _card(drm, "card10", "0000:01:00.0", "nvidia", "renderD129")
        _card(drm, "card2", "0000:00:02.0", "i915", "renderD128")
        (drm / "card2-eDP-1").mkdir()
        (drm / "renderD128").mkdir()

        gpus = G.detect_gpus(drm, tmp / "dri")
        assert [g.card for g in gpus] == ["card2", "card10"], [g.card for g in gpus]
        assert [g.index for g in gpus] == [0, 1]
        assert gpus[0].driver == "i915"
        assert gpus[1].driver == "nvidia"
        assert gpus[0].pci_slot == "0000:00:02.0"
        assert "Iris Xe" in gpus[0].name, gpus[0].name
        assert "GeForce RTX 3050" in gpus[1].name, gpus[1].name
        assert gpus[1].render_node == "/dev/dri/renderD129"
        assert gpus[0].renderer is None

        hints = [env for argv, env in calls if argv[0] == "glxinfo"]
        assert hints == [{"DRI_PRIME": "0"}, {"DRI_PRIME": "1"}], hints
    finally:
        G.run_tool = saved
        shutil.rmtree(tmp, ignore_errors=True)

def test_detect_gpus_without_drm_dir():
    saved = G.run_tool
    G.run_tool = _fake_tools({})[0]
    try:
        assert G.detect_gpus(Path("/nonexistent/drm"), Path("/nonexistent/dri")) == []
    finally:
        G.run_tool = saved

def test_card_number_orders_non_numeric_last():
    names = ["cardX", "card10", "card1", "card2"]
    assert sorted(names, key=G.card_number) == ["card1", "card2", "card10", "cardX"]

def test_lookup_pci_name_with_and_without_domain():
    names = {"01:00.0": "NVIDIA thing"}
    assert G.lookup_pci_name(names, "0000:01:00.0") == "NVIDIA thing"
    assert G.lookup_pci_name({"0000:01:00.0": "x"}, "01:00.0") == "x"
    assert G.lookup_pci_name(names, None) is None

def test_renderer_falls_back_to_vulkan():
    saved = G.run_tool
    G.run_tool = _fake_tools({
        "vulkaninfo": "Devices:\n========\nGPU0:\n\tdeviceName         = AMD Radeon 780M (RADV GFX1103_R1)\n",
    })[0]
    try:
        assert G.detect_renderer(0) == "AMD Radeon 780M (RADV GFX1103_R1)"
    finally:
        G.run_tool = saved

def test_labels():
    gpus = [
        GpuDescriptor(index=0, card="card0", name="00:02.0 VGA compatible controller: Intel Corporation Iris Xe Graphics",
                      renderer="Mesa Intel(R) Graphics (ADL GT2)"),
        GpuDescriptor(index=1, card="card1", name="x", renderer="NVIDIA GeForce RTX 3050 Laptop GPU (nvidia)"),
    ]
    assert G.pretty_gpu_name(gpus[1]) == "NVIDIA GeForce RTX 3050 Laptop GPU"
    assert G.choice_label(gpus, GpuChoice.gpu(1)) == "NVIDIA GeForce RTX 3050 Laptop GPU (#1)"
    assert G.choice_label(gpus, GpuChoice.gpu(7)) == "GPU 7"
    assert G.choice_label(gpus, GpuChoice.default()).startswith("Default GPU (")
    choices = G.build_gpu_choices(gpus)
    assert [c for _, c in choices] == [GpuChoice.default(), GpuChoice.gpu(0), GpuChoice.gpu(1)]

def main():
    test_detect_gpus_dense_indices()
    print("[OK] cards sorted numerically, indices dense from 0")
    test_detect_gpus_without_drm_dir()
    print("[OK] missing sysfs yields no GPUs")
    test_card_number_orders_non_numeric_last()
    test_lookup_pci_name_with_and_without_domain()
    print("[OK] lspci names matched by PCI slot")
    test_renderer_falls_back_to_vulkan()
    print("[OK] vulkaninfo fallback")
    test_labels()
    print("[OK] display labels")

if __name__ == "__main__":
    main()
