"""
Reference target Flask application factory.

Stands in for the real shop API on local runs and in the integration
tests: ``POST /api/auth`` issues an HS256 bearer token (registering the
user on first login) and ``GET /api/info`` returns the caller's balance,
inventory and coin history, rejecting requests without a valid token.

Key Concepts Demonstrated:
- One factory call per app instance, so tests get a fresh app
- A module-level SQLAlchemy extension bound late with init_app
- Routes grouped in a blueprint mounted under /api
"""

from __future__ import annotations

import logging
import os

from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from target.config import get_config

db = SQLAlchemy()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(config_name: str | None = None) -> Flask:
    """
    Build the target application.

    Args:
        config_name: Settings to use, by environment name; see
            :func:`target.config.get_config`.

    Returns:
        A configured :class:`~flask.Flask` application with its tables
        created.
    """
    app = Flask(__name__, instance_relative_config=True)
    config_class = get_config(config_name)
    app.config.from_object(config_class)

    logger.info("Creating target app with config: %s", config_class.__name__)

    os.makedirs(app.instance_path, exist_ok=True)
    db.init_app(app)

    # Imported here because the blueprint module references ``db``.
    from .routes import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    with app.app_context():
        db.create_all()
        logger.info("Target database tables created")

    return app
