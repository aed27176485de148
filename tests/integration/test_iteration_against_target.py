"""
Integration tests running the iteration body against the reference target.

The Flask test client is wrapped in a small adapter implementing the
``request(..., catch_response=True)`` protocol of Locust's
``HttpSession``, so the same ``run_iteration`` code that Locust drives
is exercised end to end: token, request, check, statistics, thresholds.
"""

from __future__ import annotations

from urllib.parse import urlparse

import pytest
from locust.stats import RequestStats

from load_scenario.checks import CheckTally
from load_scenario.config import TargetConfig
from load_scenario.iteration import build_request_spec, run_iteration
from load_scenario.metrics import RunMetrics
from load_scenario.thresholds import DEFAULT_THRESHOLDS, evaluate_thresholds, run_passed

pytestmark = pytest.mark.integration

TARGET_URL = "http://localhost:8080/api/info"


class _CaughtResponse:
    """Context manager reporting the outcome to ``RequestStats`` on exit."""

    def __init__(self, response, stats: RequestStats, method: str, name: str) -> None:
        self._response = response
        self._stats = stats
        self._method = method
        self._name = name
        self._error: str | None = None
        self.status_code = response.status_code

    def success(self) -> None:
        self._error = None

    def failure(self, message: str) -> None:
        self._error = message

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> bool:
        # Locust logs every request, and failures additionally as errors.
        self._stats.log_request(self._method, self._name, 1, len(self._response.data))
        if self._error is not None:
            self._stats.log_error(self._method, self._name, self._error)
        return False


class FlaskSessionAdapter:
    """Minimal ``HttpSession`` stand-in backed by a Flask test client."""

    def __init__(self, client, stats: RequestStats) -> None:
        self._client = client
        self.stats = stats

    def request(self, method, url, *, name=None, headers=None, timeout=None, catch_response=False):
        path = urlparse(url).path
        response = self._client.open(path, method=method, headers=headers or {})
        return _CaughtResponse(response, self.stats, method, name or path)


@pytest.fixture
def session(target_client):
    return FlaskSessionAdapter(target_client, RequestStats())


def _token(target_client, credentials) -> str:
    return target_client.post("/api/auth", json=credentials).get_json()["token"]


def test_authenticated_iterations_pass_default_thresholds(session, target_client, credentials):
    # Arrange
    target = TargetConfig(url=TARGET_URL, token=_token(target_client, credentials))
    spec = build_request_spec(target)
    tally = CheckTally()

    # Act
    for _ in range(50):
        tally.record(run_iteration(session, spec, pause=0))

    # Assert
    metrics = RunMetrics.from_request_stats(session.stats, tally)
    assert tally.iterations == 50
    assert tally.rate == 1.0
    assert metrics.get("http_req_failed", "rate") == 0.0
    assert metrics.get("http_reqs", "count") == 50.0
    assert run_passed(evaluate_thresholds(DEFAULT_THRESHOLDS, metrics)) is True


def test_placeholder_token_fails_every_iteration(session):
    # Arrange
    spec = build_request_spec(TargetConfig(url=TARGET_URL))
    tally = CheckTally()

    # Act
    for _ in range(20):
        tally.record(run_iteration(session, spec, pause=0))

    # Assert
    metrics = RunMetrics.from_request_stats(session.stats, tally)
    results = evaluate_thresholds(DEFAULT_THRESHOLDS, metrics)
    assert tally.rate == 0.0
    assert metrics.get("http_req_failed", "rate") == 1.0
    assert [r.passed for r in results] == [True, False]
    assert session.stats.errors


def test_iteration_sends_bearer_header_and_pauses(target_client, credentials):
    # Arrange
    seen_headers = []
    sleeps = []

    class RecordingSession(FlaskSessionAdapter):
        def request(self, method, url, **kwargs):
            seen_headers.append(kwargs["headers"])
            return super().request(method, url, **kwargs)

    token = _token(target_client, credentials)
    session = RecordingSession(target_client, RequestStats())

    # Act
    results = run_iteration(
        session,
        build_request_spec(TargetConfig(url=TARGET_URL, token=token)),
        sleep=sleeps.append,
    )

    # Assert
    assert results[0].passed is True
    assert seen_headers == [{"Authorization": f"Bearer {token}"}]
    assert sleeps == [0.001]
