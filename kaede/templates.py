INDEX_HTML = r"""<!doctype html>
<html lang="en" data-bs-theme="dark">
<head>
  <meta charset="utf-8">
  <title>{{ app_title }}</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css" rel="stylesheet">
  <style>
    .card { border: 1px solid rgba(255,255,255,.08); }
    .app-icon { width: 40px; height: 40px; object-fit: contain; }
    .title { white-space: nowrap; overflow: hidden; text-overflow: ellipsis; }
    .path { color: rgba(255,255,255,.6); }
  </style>
</head>
<body>
<nav class="navbar navbar-expand-lg bg-body-tertiary px-3">
  <a class="navbar-brand" href="{{ url_for('kaede.index') }}">{{ app_title }}</a>
  <form class="d-flex ms-3" method="get" action="{{ url_for('kaede.index') }}">
    <input class="form-control form-control-sm" type="search" name="q" value="{{ query }}" placeholder="Search applications">
  </form>
  <div class="ms-auto d-flex gap-2">
    <a class="btn btn-outline-light btn-sm" href="{{ url_for('kaede.settings') }}">Settings</a>
    <a class="btn btn-outline-light btn-sm" href="{{ url_for('kaede.rescan') }}">Rescan</a>
  </div>
</nav>

<div class="container py-4">
  {% with messages = get_flashed_messages() %}
    {% if messages %}
      <div class="alert alert-warning">{{ messages|join('. ') }}</div>
    {% endif %}
  {% endwith %}

  {% if steam_running %}
    <div class="alert alert-info py-2">Steam is running. Close it before changing Steam games, or it may overwrite the launch options.</div>
  {% endif %}

  <div class="card p-3 mb-4">
    <h5 class="mb-2">Detected GPUs</h5>
    {% if not gpus %}
      <div class="text-secondary">No GPUs found under <code>/sys/class/drm</code>.</div>
    {% else %}
      <ul class="list-unstyled mb-0 small">
        {% for gpu in gpus %}
          <li>
            <strong>#{{ gpu.index }}</strong> {{ gpu_names[gpu.index] }}
            <span class="path">{{ gpu.card }}{% if gpu.driver %} · {{ gpu.driver }}{% endif %}{% if gpu.pci_slot %} · {{ gpu.pci_slot }}{% endif %}</span>
          </li>
        {% endfor %}
      </ul>
    {% endif %}
  </div>

  {% if not apps %}
    <div class="text-center py-5">
      <h4>No applications found.</h4>
      <p class="text-secondary">Kaede lists launchers from the system and user <code>applications</code> directories.</p>
    </div>
  {% else %}
  <div class="list-group">
    {% for a in apps %}
      {% set current = choices[a.desktop_id] %}
      <div class="list-group-item d-flex align-items-center gap-3">
        <img class="app-icon" src="{{ url_for('kaede.icon', app_id=ids[a.desktop_id]) }}" alt="">
        <div class="flex-grow-1 overflow-hidden">
          <div class="title fw-semibold" title="{{ a.name }}">
            {{ a.name }}
            {% if a.kind != 'native' %}<span class="badge text-bg-secondary ms-2">{{ a.kind|capitalize }}</span>{% endif %}
          </div>
          <div class="small path title">{{ a.desktop_id }}</div>
        </div>
        <form class="d-flex gap-2" method="post" action="{{ url_for('kaede.assign', app_id=ids[a.desktop_id]) }}">
          <select class="form-select form-select-sm" name="gpu">
            {% for label, choice in gpu_choices %}
              <option value="{{ 'default' if choice.is_default else choice.index }}" {% if choice == current %}selected{% endif %}>{{ label }}</option>
            {% endfor %}
          </select>
          <button class="btn btn-primary btn-sm" type="submit">Apply</button>
        </form>
      </div>
    {% endfor %}
  </div>
  {% endif %}
</div>
</body>
</html>
"""

SETTINGS_HTML = r"""<!doctype html>
<html lang="en" data-bs-theme="dark">
<head>
  <meta charset="utf-8">
  <title>Settings - {{ app_title }}</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css" rel="stylesheet">
</head>
<body>
<nav class="navbar navbar-expand-lg bg-body-tertiary px-3">
  <a class="navbar-brand" href="{{ url_for('kaede.index') }}">{{ app_title }}</a>
</nav>

<div class="container py-4">
  {% with messages = get_flashed_messages() %}
    {% if messages %}
      <div class="alert alert-warning">{{ messages|join('. ') }}</div>
    {% endif %}
  {% endwith %}

  <form action="{{ url_for('kaede.settings') }}" method="post" class="card p-3">
    <h5 class="mb-3">Application list</h5>

    <div class="form-check form-switch mb-2">
      <input class="form-check-input" type="checkbox" role="switch" id="showSteam" name="show_steam_apps" {% if settings.show_steam_apps %}checked{% endif %}>
      <label class="form-check-label" for="showSteam">Show Steam games</label>
    </div>
    <div class="form-check form-switch mb-2">
      <input class="form-check-input" type="checkbox" role="switch" id="showHeroic" name="show_heroic_apps" {% if settings.show_heroic_apps %}checked{% endif %}>
      <label class="form-check-label" for="showHeroic">Show Heroic games</label>
    </div>
    <div class="form-check form-switch mb-3">
      <input class="form-check-input" type="checkbox" role="switch" id="showFlatpak" name="show_flatpak_apps" {% if settings.show_flatpak_apps %}checked{% endif %}>
      <label class="form-check-label" for="showFlatpak">Show Flatpak applications</label>
    </div>

    <h5 class="mb-3">Steam</h5>
    <div class="form-check form-switch mb-3">
      <input class="form-check-input" type="checkbox" role="switch" id="envWrapper" name="steam_env_wrapper" {% if settings.steam_env_wrapper %}checked{% endif %}>
      <label class="form-check-label" for="envWrapper">Prefix launch options with <code>env</code></label>
      <div class="form-text">Some Steam runtimes only pick up variables passed through <code>env</code>.</div>
    </div>

    <p class="small path">Settings file: <code>{{ settings_file }}</code></p>

    <div class="d-flex gap-2">
      <button class="btn btn-primary" type="submit">Save</button>
      <a class="btn btn-secondary" href="{{ url_for('kaede.index') }}">Back</a>
    </div>
  </form>
</div>
</body>
</html>
"""
