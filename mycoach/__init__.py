"""Flask application factory."""

from __future__ import annotations

import secrets
from typing import Optional

from flask import Flask

from .config import AppConfig, load_config
from .services.ai_service import AIService
from .services.coach_service import CoachService
from .services.storage_backends import build_slot
from .services.storage_service import StorageService
from .utils.dates import resolve_timezone


def create_app(config: Optional[AppConfig] = None) -> Flask:
    """Configure and return the Flask application.

    Services are built once here and attached to the app, so every request
    shares the same store and the same coaching session.
    """

    if config is None:
        config = load_config()

    app = Flask(__name__)
    app.config['SECRET_KEY'] = secrets.token_hex(32)
    app.config['MYCOACH'] = config

    tz = resolve_timezone(config.timezone)
    app.storage_service = StorageService(build_slot(config.storage), tz=tz)
    app.ai_service = AIService.from_config(config.gemini)
    app.coach_service = CoachService(
        app.storage_service,
        app.ai_service,
        history_window=config.history_window,
    )

    from .routes import main_bp

    app.register_blueprint(main_bp)

    return app
