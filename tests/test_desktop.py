#!/usr/bin/env python3
import shutil
import tempfile
from pathlib import Path

from kaede.desktop import (KAEDE_MARKER, apply_desktop_override, rewrite_desktop_content, unwrap_exec,
                           user_launcher_path, wrap_exec)
from kaede.environment import build_env_pairs
from kaede.errors import RefusedWrite
from kaede.models import GpuDescriptor, LaunchDescriptor

INTEL = GpuDescriptor(index=0, card="card0", name="Intel Iris Xe", driver="i915", pci_slot="0000:00:02.0")

SOURCE = """\
[Desktop Entry]
Type=Application
Name=Blender
Exec=blender %f
Icon=blender

[Desktop Action new]
Name=New
Exec=blender --new
"""

def _app(path: Path, exec_: str = "blender", desktop_id: str = "blender.desktop") -> LaunchDescriptor:
    return LaunchDescriptor(desktop_id=desktop_id, path=path, name="Blender", icon="blender", exec=exec_)

def test_flatpak_scenario_inserts_after_run():
    env = build_env_pairs(0, INTEL)
    wrapped = wrap_exec("flatpak run --branch=stable org.foo.Bar", env)
    assert wrapped == ("flatpak run --env=DRI_PRIME=0 --env=MESA_VK_DEVICE_SELECT=pci-0000_00_02_0 "
                       "--env=MESA_VK_DEVICE_SELECT_FORCE_DEFAULT_DEVICE=1 --branch=stable org.foo.Bar"), wrapped
    assert unwrap_exec(wrapped) == "flatpak run --branch=stable org.foo.Bar"
    assert wrap_exec(wrapped, env) == wrapped

def test_env_wrap_and_unwrap():
    assert wrap_exec("blender %f", ["DRI_PRIME=1"]) == "env DRI_PRIME=1 blender %f"
    assert wrap_exec("env DRI_PRIME=0 blender %f", ["DRI_PRIME=1"]) == "env DRI_PRIME=1 blender %f"
    assert unwrap_exec("env DRI_PRIME=1 FOO=bar blender") == "env FOO=bar blender"
    assert unwrap_exec("env FOO=bar blender") == "env FOO=bar blender"

def test_rewrite_touches_only_first_entry_exec():
    out = rewrite_desktop_content(SOURCE, "env DRI_PRIME=1 blender %f", _app(Path("/x")))
    assert out == SOURCE.replace("Exec=blender %f\nIcon=blender\n",
                                 f"Exec=env DRI_PRIME=1 blender %f\nIcon=blender\n{KAEDE_MARKER}\n"), out
    synthesized = rewrite_desktop_content("", "env DRI_PRIME=1 blender", _app(Path("/x")))
    assert synthesized.startswith("[Desktop Entry]\nType=Application\nName=Blender\nIcon=blender\n")
    assert synthesized.endswith(f"Exec=env DRI_PRIME=1 blender\nTerminal=false\n{KAEDE_MARKER}\n")

def test_override_round_trip_and_idempotence():
    tmp = Path(tempfile.mkdtemp(prefix="kaede_desktop_"))
    try:
        src = tmp / "usr/share/applications/blender.desktop"
        src.parent.mkdir(parents=True)
        src.write_text(SOURCE, encoding="utf-8")
        app = _app(src)
        target = user_launcher_path(app.desktop_id, tmp)

        changed, written = apply_desktop_override(app, ["DRI_PRIME=1"], tmp)
        assert changed and written == target
        first = target.read_bytes()
        assert b"Exec=env DRI_PRIME=1 blender %f\n" in first
        assert KAEDE_MARKER.encode() in first

        changed, _ = apply_desktop_override(app, ["DRI_PRIME=1"], tmp)
        assert not changed and target.read_bytes() == first

        # after a rescan the override itself is the source
        managed = _app(target, exec_="env DRI_PRIME=1 blender")
        changed, _ = apply_desktop_override(managed, ["DRI_PRIME=0"], tmp)
        assert changed
        assert "Exec=env DRI_PRIME=0 blender %f\n" in target.read_text(encoding="utf-8")

        changed, _ = apply_desktop_override(managed, None, tmp)
        assert changed and not target.exists()
        changed, _ = apply_desktop_override(app, None, tmp)
        assert not changed
    finally:
        shutil.rmtree(tmp, ignore_errors=True)

def test_refuses_unmanaged_local_file():
    tmp = Path(tempfile.mkdtemp(prefix="kaede_desktop_"))
    try:
        target = user_launcher_path("mine.desktop", tmp)
        target.parent.mkdir(parents=True)
        target.write_text(SOURCE, encoding="utf-8")
        app = _app(target, desktop_id="mine.desktop")
        try:
            apply_desktop_override(app, ["DRI_PRIME=1"], tmp)
            raise AssertionError("expected RefusedWrite")
        except RefusedWrite:
            pass
        # Default never deletes a file it did not write
        changed, _ = apply_desktop_override(app, None, tmp)
        assert not changed and target.read_text(encoding="utf-8") == SOURCE
    finally:
        shutil.rmtree(tmp, ignore_errors=True)

def main():
    test_flatpak_scenario_inserts_after_run()
    print("[OK] flatpak run gets --env= tokens after run")
    test_env_wrap_and_unwrap()
    test_rewrite_touches_only_first_entry_exec()
    print("[OK] Exec wrapping and desktop rewrite")
    test_override_round_trip_and_idempotence()
    test_refuses_unmanaged_local_file()
    print("[OK] override written, refreshed, removed; unmanaged file left alone")

if __name__ == "__main__":
    main()
