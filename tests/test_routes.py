#!/usr/bin/env python3
"""Panel routes through Flask's test client on a temp HOME."""
import shutil
import tempfile
from pathlib import Path

import kaede.routes as R
from kaede import create_app
from kaede.desktop import user_launcher_path
from kaede.models import GpuDescriptor
from kaede.settings import load_settings
from kaede.utils import b64url_encode

GPUS = [
    GpuDescriptor(index=0, card="card0", name="Intel Iris Xe", driver="i915", pci_slot="0000:00:02.0"),
    GpuDescriptor(index=1, card="card1", name="NVIDIA GeForce RTX 3050", driver="nvidia", pci_slot="0000:01:00.0",
                  renderer="NVIDIA GeForce RTX 3050 Laptop GPU (nvidia)"),
]

class _Panel:
    def __init__(self):
        self.tmp = Path(tempfile.mkdtemp(prefix="kaede_routes_"))
        self.system = self.tmp / "system"
        self.local = self.tmp / ".local/share/applications"
        for d in (self.system, self.local):
            d.mkdir(parents=True)
        (self.system / "blender.desktop").write_text(
            "[Desktop Entry]\nType=Application\nName=Blender\nExec=blender %f\nIcon=zzz-kaede-none\n",
            encoding="utf-8")
        (self.local / "mine.desktop").write_text(
            "[Desktop Entry]\nType=Application\nName=Mine\nExec=mine\n", encoding="utf-8")
        (self.system / "tf2.desktop").write_text(
            "[Desktop Entry]\nType=Application\nName=Team Fortress 2\nExec=steam steam://rungameid/440\n",
            encoding="utf-8")

        self._saved = R.detect_gpus, R.is_steam_running, R.application_dirs
        R.detect_gpus = lambda: list(GPUS)
        R.is_steam_running = lambda: False
        R.application_dirs = lambda home=None: [self.system, self.local]

        self.settings_file = self.tmp / "config/kaede/settings.json"
        app = create_app(settings_file=self.settings_file, home=self.tmp)
        app.config["TESTING"] = True
        self.client = app.test_client()

    def close(self):
        R.detect_gpus, R.is_steam_running, R.application_dirs = self._saved
        shutil.rmtree(self.tmp, ignore_errors=True)

def test_index_lists_apps_and_gpus():
    p = _Panel()
    try:
        r = p.client.get("/")
        assert r.status_code == 200
        body = r.get_data(as_text=True)
        assert "Blender" in body and "Team Fortress 2" in body
        assert "NVIDIA GeForce RTX 3050 Laptop GPU (#1)" in body

        body = p.client.get("/?q=blend").get_data(as_text=True)
        assert "Blender" in body and "Team Fortress 2" not in body
    finally:
        p.close()

def test_assign_writes_override_and_persists_choice():
    p = _Panel()
    try:
        app_id = b64url_encode("blender.desktop")
        r = p.client.post(f"/assign/{app_id}", data={"gpu": "1"})
        assert r.status_code == 302
        target = user_launcher_path("blender.desktop", p.tmp)
        assert "Exec=env DRI_PRIME=1 __NV_PRIME_RENDER_OFFLOAD=1" in target.read_text(encoding="utf-8")
        assert load_settings(p.settings_file)["assignments"] == {"blender.desktop": {"type": "Gpu", "value": 1}}

        r = p.client.post(f"/assign/{app_id}", data={"gpu": "default"}, headers={"Accept": "application/json"})
        assert r.status_code == 200
        payload = r.get_json()
        assert payload["ok"] is True and payload["surface"] == "native" and payload["changed"] is True
        assert not target.exists()
        assert load_settings(p.settings_file)["assignments"] == {}
    finally:
        p.close()

def test_assign_reports_errors():
    p = _Panel()
    try:
        r = p.client.post(f"/assign/{b64url_encode('mine.desktop')}", data={"gpu": "0"},
                          headers={"Accept": "application/json"})
        assert r.status_code == 500
        payload = r.get_json()
        assert payload["ok"] is False and "refusing" in payload["error"]
        assert load_settings(p.settings_file)["assignments"] == {}

        r = p.client.post(f"/assign/{b64url_encode('mine.desktop')}", data={"gpu": "0"})
        assert r.status_code == 302
        assert p.client.post("/assign/" + b64url_encode("nope.desktop"), data={"gpu": "0"}).status_code == 404
    finally:
        p.close()

def test_settings_and_api():
    p = _Panel()
    try:
        assert p.client.get("/settings").status_code == 200
        r = p.client.post("/settings", data={"show_heroic_apps": "on", "steam_env_wrapper": "on"})
        assert r.status_code == 302
        s = load_settings(p.settings_file)
        assert s["steam_env_wrapper"] is True and s["show_steam_apps"] is False
        assert "Team Fortress 2" not in p.client.get("/").get_data(as_text=True)

        gpus = p.client.get("/api/gpus").get_json()
        assert [g["index"] for g in gpus] == [0, 1]
        assert gpus[1]["label"] == "NVIDIA GeForce RTX 3050 Laptop GPU"

        r = p.client.get(f"/icon/{b64url_encode('blender.desktop')}")
        assert r.status_code == 200 and r.mimetype == "image/svg+xml"
        assert p.client.get("/rescan").status_code == 302
    finally:
        p.close()

def main():
    test_index_lists_apps_and_gpus()
    print("[OK] index renders apps and GPUs, search filters")
    test_assign_writes_override_and_persists_choice()
    test_assign_reports_errors()
    print("[OK] assign applies, persists, reports errors")
    test_settings_and_api()
    print("[OK] settings, /api/gpus, icon placeholder")

if __name__ == "__main__":
    main()
