"""
Settings for the reference target service.

One ``Config`` base carries the values every deployment needs (signing
secret, token lifetime, starting balance, database URL).  The
per-environment subclasses only change the database and debug flags.
:func:`get_config` picks a subclass by name, falling back to
``FLASK_ENV``.

Key Concepts Demonstrated:
- Per-environment settings as class attributes
- Secrets and tunables read from environment variables
- In-memory database for tests so runs never share state
"""

from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy.pool import StaticPool

TARGET_DIR = Path(__file__).resolve().parent


class Config:
    """
    Settings common to every environment.

    Each value can be replaced through the environment variable of the
    same name, so a container can be configured without code changes.
    """

    SECRET_KEY: str = os.environ.get("SECRET_KEY", "target-dev-secret-change-in-production")
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    SQLALCHEMY_DATABASE_URI: str = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{TARGET_DIR / 'instance' / 'target.db'}",
    )

    # HS256 signing secret shared by the token issuer and the verifier
    JWT_SECRET: str = os.environ.get("JWT_SECRET", "target-jwt-secret-change-in-production")
    # Minutes a newly issued token stays valid
    TOKEN_TTL_MINUTES: int = int(os.environ.get("TOKEN_TTL_MINUTES", "60"))
    # Coin balance credited to an account on first login
    STARTING_COINS: int = int(os.environ.get("STARTING_COINS", "1000"))


class DevelopmentConfig(Config):
    DEBUG: bool = True
    TESTING: bool = False


class TestingConfig(Config):
    """
    Settings for the pytest suite.

    The database lives in memory; ``StaticPool`` hands every request
    the same connection so the tables survive between requests.
    """

    DEBUG: bool = True
    TESTING: bool = True
    SQLALCHEMY_DATABASE_URI: str = os.environ.get("TEST_DATABASE_URL", "sqlite://")
    SQLALCHEMY_ENGINE_OPTIONS: dict = {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    }
    JWT_SECRET: str = os.environ.get(
        "TEST_JWT_SECRET", "test-jwt-secret-key-for-local-tests-123456"
    )


class ProductionConfig(Config):
    """
    Settings for a target deployed next to a real load run.

    Supply ``JWT_SECRET`` through the environment; the fallback in
    ``Config`` is public.
    """

    DEBUG: bool = False
    TESTING: bool = False


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Resolve a settings class by environment name.

    Args:
        env: ``development``, ``testing`` or ``production``.  ``None``
            reads ``FLASK_ENV``; unknown names get the development
            settings.

    Returns:
        The matching ``Config`` subclass.
    """
    if env is None:
        env = os.environ.get("FLASK_ENV", "development")
    return config.get(env, config["default"])
