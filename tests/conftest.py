"""
Shared pytest fixtures for the load scenario test suite.

Provides the reference target application and its HTTP client, a
Locust ``RequestStats`` factory for feeding recorded samples into the
metrics and threshold code, and helpers that isolate tests from the
developer's ``LOAD_*`` environment.

Key Concepts Demonstrated:
- Fixture scopes (function, session)
- Factory-pattern fixtures for statistics and config files
- Environment isolation via monkeypatch
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import pytest
import yaml
from faker import Faker

# Set testing environment before importing the target app
os.environ["FLASK_ENV"] = "testing"

from locust.stats import RequestStats  # noqa: E402

from load_scenario.config import CONFIG_PATH_ENV, ENV_OVERRIDES  # noqa: E402
from target.target_app import create_app  # noqa: E402

fake = Faker()


# -----------------------------------------------------------------------------
# Environment Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def clean_load_env(monkeypatch):
    """Remove every ``LOAD_*`` override so tests see only what they set."""
    for env_var in (*ENV_OVERRIDES, CONFIG_PATH_ENV):
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def write_config(tmp_path) -> Callable[[dict[str, Any]], Path]:
    """Write a mapping as a scenario YAML file and return its path."""

    def _write(data: dict[str, Any], name: str = "scenario.yml") -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return path

    return _write


# -----------------------------------------------------------------------------
# Statistics Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def stats_factory() -> Callable[..., RequestStats]:
    """
    Build Locust request statistics from (response_time_ms, ok) samples.

    Failed samples are logged the way Locust's request listener logs
    them: as a request *and* an error.
    """

    def _build(samples: Iterable[tuple[int, bool]]) -> RequestStats:
        stats = RequestStats()
        for response_time, ok in samples:
            stats.log_request("GET", "/api/info", response_time, 64)
            if not ok:
                stats.log_error("GET", "/api/info", "Expected 200, got 500")
        return stats

    return _build


# -----------------------------------------------------------------------------
# Target Application Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def target_app():
    """Create the reference target once for the whole session."""
    application = create_app("testing")
    yield application


@pytest.fixture
def target_client(target_app):
    """Provide a Flask test client for the reference target."""
    with target_app.test_client() as test_client:
        yield test_client


@pytest.fixture
def credentials() -> dict[str, str]:
    """Unique, valid login credentials for the reference target."""
    return {"username": fake.unique.email(), "password": fake.password(length=12)}
