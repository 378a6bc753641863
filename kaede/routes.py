import io
from pathlib import Path
from flask import Blueprint, current_app, render_template_string, redirect, url_for, flash, request, send_file, abort, jsonify

from .errors import KaedeError
from .gpu import build_gpu_choices, choice_label, detect_gpus, pretty_gpu_name
from .icons import placeholder_svg, resolve_icon, thumbnail_png
from .launch import apply_launcher_override
from .models import GpuChoice
from .scanning import application_dirs, filter_visible, scan_desktop_entries
from .settings import DEFAULTS, get_choice, load_settings, save_settings, set_choice
from .utils import b64url_decode, b64url_encode, is_steam_running

from .templates import INDEX_HTML, SETTINGS_HTML

bp = Blueprint("kaede", __name__)

def _cfg():
    c = current_app.config
    home = Path(c["HOME"]) if c.get("HOME") else None
    return c["APP_TITLE"], Path(c["SETTINGS_FILE"]), home

def _wants_json() -> bool:
    return request.accept_mimetypes.accept_json and not request.accept_mimetypes.accept_html

def _scan(home):
    return scan_desktop_entries(application_dirs(home))

def get_app_or_404(app_id: str, home):
    try:
        desktop_id = b64url_decode(app_id)
    except ValueError:
        abort(404)
    for app in _scan(home):
        if app.desktop_id == desktop_id:
            return app
    abort(404)

@bp.get("/")
def index():
    APP_TITLE, SETTINGS_FILE, HOME = _cfg()
    settings = load_settings(SETTINGS_FILE)
    query = request.args.get("q", "")
    gpus = detect_gpus()
    apps = filter_visible(_scan(HOME), settings, query)

    return render_template_string(
        INDEX_HTML,
        app_title=APP_TITLE,
        apps=apps,
        ids={a.desktop_id: b64url_encode(a.desktop_id) for a in apps},
        choices={a.desktop_id: get_choice(settings, a.desktop_id) for a in apps},
        gpus=gpus,
        gpu_names={g.index: pretty_gpu_name(g) for g in gpus},
        gpu_choices=build_gpu_choices(gpus),
        query=query,
        steam_running=is_steam_running(),
    )

@bp.post("/assign/<app_id>")
def assign(app_id):
    _, SETTINGS_FILE, HOME = _cfg()
    app = get_app_or_404(app_id, HOME)
    choice = GpuChoice.parse(request.form.get("gpu"))
    settings = load_settings(SETTINGS_FILE)
    gpus = detect_gpus()

    try:
        result = apply_launcher_override(
            app, choice, gpus,
            use_env_wrapper=settings["steam_env_wrapper"], home=HOME)
    except KaedeError as e:
        current_app.logger.warning("override for %s failed: %s", app.desktop_id, e)
        if _wants_json():
            return jsonify({"ok": False, "error": str(e)}), 500
        flash(f"{app.name}: override failed: {e}")
        return redirect(url_for("kaede.index"))

    set_choice(settings, app.desktop_id, choice)
    save_settings(SETTINGS_FILE, settings)

    label = choice_label(gpus, choice)
    if _wants_json():
        return jsonify({
            "ok": True,
            "message": f"{app.name} set to {label}",
            "surface": result.surface,
            "targets": result.targets,
            "changed": result.changed,
            "warnings": result.warnings,
        })

    for w in result.warnings:
        flash(w)
    flash(f"{app.name} set to {label}" + ("" if result.changed else " (no change needed)"))
    return redirect(url_for("kaede.index"))

@bp.get("/settings")
def settings():
    APP_TITLE, SETTINGS_FILE, _ = _cfg()
    return render_template_string(
        SETTINGS_HTML,
        app_title=APP_TITLE,
        settings=load_settings(SETTINGS_FILE),
        settings_file=str(SETTINGS_FILE),
    )

@bp.post("/settings")
def settings_post():
    _, SETTINGS_FILE, _ = _cfg()
    settings = load_settings(SETTINGS_FILE)
    for key in DEFAULTS:
        settings[key] = bool(request.form.get(key))
    try:
        save_settings(SETTINGS_FILE, settings)
        flash("Settings saved.")
    except KaedeError as e:
        flash(f"Failed to save settings: {e}")
    return redirect(url_for("kaede.settings"))

@bp.get("/rescan")
def rescan():
    flash("Rescanned applications and GPUs.")
    return redirect(url_for("kaede.index"))

@bp.get("/icon/<app_id>")
def icon(app_id):
    _, _, HOME = _cfg()
    app = get_app_or_404(app_id, HOME)
    path = resolve_icon(app.icon, HOME)
    if path is not None:
        data = thumbnail_png(path)
        if data is not None:
            return send_file(io.BytesIO(data), mimetype="image/png")
    svg = placeholder_svg(app.name)
    return send_file(io.BytesIO(svg.encode("utf-8")), mimetype="image/svg+xml")

@bp.get("/api/gpus")
def api_gpus():
    gpus = detect_gpus()
    return jsonify([
        {
            "index": g.index,
            "card": g.card,
            "name": g.name,
            "label": pretty_gpu_name(g),
            "driver": g.driver,
            "pci_slot": g.pci_slot,
            "render_node": g.render_node,
            "renderer": g.renderer,
        }
        for g in gpus
    ])

@bp.get("/favicon.ico")
def favicon():
    return ("", 204)
