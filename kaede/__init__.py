import logging
import os
from pathlib import Path
from typing import Optional, Union

from flask import Flask
from .routes import bp as routes_bp
from .settings import default_settings_file

# Bind only localhost unless overridden
BIND = os.environ.get("BIND", "127.0.0.1")
PORT = int(os.environ.get("PORT", "5000"))
LOG_FORMAT = "%(asctime)s - [%(levelname)s] - %(name)s - %(message)s"

def configure_logging(level: Optional[str] = None) -> None:
    level = (level or os.environ.get("KAEDE_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

def create_app(settings_file: Optional[Union[str, Path]] = None,
               home: Optional[Union[str, Path]] = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET", "dev-" + os.urandom(8).hex())
    app.config["APP_TITLE"] = "Kaede GPU Assignment"
    app.config["SETTINGS_FILE"] = str(settings_file or default_settings_file())
    app.config["HOME"] = str(home) if home is not None else None

    app.register_blueprint(routes_bp)
    return app
