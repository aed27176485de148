"""WSGI entry point for the reference target service."""

import os

from target.target_app import create_app

app = create_app(os.getenv("FLASK_ENV", "production"))
