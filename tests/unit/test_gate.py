"""
Unit tests for the threshold gate that decides a run's exit status.

Key SDET Concepts Demonstrated:
- Exit-code contract testing (0 pass, 1 breach, 2 script error kept)
- Injected clock for time-dependent abort logic
- Minimal runner doubles driving a polling loop to completion
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from locust.runners import STATE_RUNNING, STATE_STOPPED

from load_scenario.checks import CheckResult, CheckTally
from load_scenario.errors import EXIT_PASS, EXIT_SCRIPT_ERROR, EXIT_THRESHOLD_BREACH
from load_scenario.gate import ThresholdGate
from load_scenario.thresholds import DEFAULT_THRESHOLDS, Threshold

pytestmark = pytest.mark.unit


class FakeRunner:
    """Runner double that stays ``running`` until ``quit`` is called."""

    def __init__(self, stats, state: str = STATE_RUNNING) -> None:
        self.stats = stats
        self.state = state
        self.quit_calls = 0

    def quit(self) -> None:
        self.quit_calls += 1
        self.state = STATE_STOPPED


def _environment(stats, exit_code=None) -> SimpleNamespace:
    return SimpleNamespace(stats=stats, process_exit_code=exit_code, runner=FakeRunner(stats))


def _abort_threshold(expression: str = "rate<0.01", delay: float = 0.0) -> Threshold:
    return Threshold.parse(
        "http_req_failed", expression, abort_on_fail=True, delay_abort_eval=delay
    )


# -----------------------------------------------------------------------------
# Final verdict
# -----------------------------------------------------------------------------


def test_passing_run_exits_zero(stats_factory):
    # Arrange
    gate = ThresholdGate(DEFAULT_THRESHOLDS)
    environment = _environment(stats_factory([(10, True)] * 200))

    # Act
    gate.on_quitting(environment)

    # Assert
    assert environment.process_exit_code == EXIT_PASS
    assert all(result.passed for result in gate.results)


def test_passing_thresholds_override_locust_failure_exit_code(stats_factory):
    # Locust would exit 1 for any failed request; a tolerated rate still passes.
    gate = ThresholdGate([Threshold.parse("http_req_failed", "rate<0.5")])
    environment = _environment(stats_factory([(10, True)] * 9 + [(10, False)]), exit_code=1)

    gate.on_quitting(environment)

    assert environment.process_exit_code == EXIT_PASS


@pytest.mark.parametrize(
    "samples",
    [
        [(60, True)] * 100,
        [(10, False)] * 100,
        [],
    ],
    ids=["slow", "failing", "no-requests"],
)
def test_breached_thresholds_exit_one(stats_factory, samples):
    gate = ThresholdGate(DEFAULT_THRESHOLDS)
    environment = _environment(stats_factory(samples))

    gate.on_quitting(environment)

    assert environment.process_exit_code == EXIT_THRESHOLD_BREACH


def test_script_error_exit_code_is_kept(stats_factory):
    gate = ThresholdGate(DEFAULT_THRESHOLDS)
    environment = _environment(stats_factory([(10, True)] * 10), exit_code=EXIT_SCRIPT_ERROR)

    gate.on_quitting(environment)

    assert environment.process_exit_code == EXIT_SCRIPT_ERROR


def test_summary_is_logged_on_quitting(stats_factory, caplog):
    gate = ThresholdGate(DEFAULT_THRESHOLDS)

    with caplog.at_level("INFO", logger="load_scenario.gate"):
        gate.on_quitting(_environment(stats_factory([(10, True)])))

    assert "Performance Threshold Check" in caplog.text
    assert "Overall: PASS" in caplog.text


def test_checks_threshold_uses_tally(stats_factory):
    # Arrange
    tally = CheckTally()
    tally.record([CheckResult("status is 200", True)])
    tally.record([CheckResult("status is 200", False)])
    gate = ThresholdGate([Threshold.parse("checks", "rate>0.9")], tally)
    environment = _environment(stats_factory([(10, True)]))

    # Act
    gate.on_quitting(environment)

    # Assert
    assert gate.results[0].actual == pytest.approx(0.5)
    assert environment.process_exit_code == EXIT_THRESHOLD_BREACH


def test_gate_computes_percentiles_named_by_thresholds(stats_factory):
    gate = ThresholdGate([Threshold.parse("http_req_duration", "p(97.5)<50")])

    metrics = gate.snapshot(stats_factory([(10, True)] * 10))

    assert metrics.get("http_req_duration", "p(97.5)") == 10.0


# -----------------------------------------------------------------------------
# Abort on fail
# -----------------------------------------------------------------------------


def test_abort_failures_respect_delay(stats_factory):
    gate = ThresholdGate([_abort_threshold(delay=5.0)])
    stats = stats_factory([(10, False)] * 10)

    assert gate.abort_failures(stats, elapsed=1.0) == []
    assert [r.threshold.metric for r in gate.abort_failures(stats, elapsed=5.0)] == ["http_req_failed"]


def test_abort_failures_ignore_non_abort_thresholds(stats_factory):
    gate = ThresholdGate(DEFAULT_THRESHOLDS)

    assert gate.abort_thresholds == ()
    assert gate.abort_failures(stats_factory([(60, False)] * 10), elapsed=100.0) == []


def test_abort_failures_ignore_unsampled_metrics(stats_factory):
    gate = ThresholdGate([_abort_threshold()])

    assert gate.abort_failures(stats_factory([]), elapsed=10.0) == []


def test_watch_quits_runner_on_first_failure(stats_factory):
    # Arrange
    gate = ThresholdGate([_abort_threshold()], interval=0, clock=lambda: 100.0)
    environment = _environment(stats_factory([(10, False)] * 10))
    gate.on_test_start(environment)

    # Act
    gate.watch(environment)

    # Assert
    assert environment.runner.quit_calls == 1
    assert environment.process_exit_code == EXIT_THRESHOLD_BREACH
    assert len(gate.aborted) == 1


def test_aborted_run_stays_failed_after_quitting(stats_factory):
    gate = ThresholdGate([_abort_threshold()], interval=0, clock=lambda: 0.0)
    environment = _environment(stats_factory([(10, False)] * 10))
    gate.on_test_start(environment)
    gate.watch(environment)

    gate.on_quitting(environment)

    assert environment.process_exit_code == EXIT_THRESHOLD_BREACH


def test_watch_returns_when_runner_already_stopped(stats_factory):
    gate = ThresholdGate([_abort_threshold()], interval=0)
    environment = _environment(stats_factory([(10, False)] * 10))
    environment.runner.state = STATE_STOPPED

    gate.watch(environment)

    assert environment.runner.quit_calls == 0
    assert gate.aborted == []
