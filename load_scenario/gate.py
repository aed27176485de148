"""
Threshold gate wired into Locust's event hooks.

The gate turns threshold evaluation into the run's exit status:

- ``on_test_start`` starts the clock that ``delay_abort_eval`` is
  measured against.
- ``watch`` runs in a background greenlet and, once per ``interval``,
  evaluates the thresholds marked ``abort_on_fail``.  The first failure
  quits the runner early.
- ``on_quitting`` evaluates every threshold over the final statistics,
  logs the summary table, and sets ``environment.process_exit_code``:
  ``0`` when all thresholds pass, ``1`` otherwise.  An exit code of
  ``2`` set earlier (configuration or authentication failure) is kept.

Locust on its own exits non-zero whenever *any* request failed; the
gate replaces that with the threshold verdict so a run with a tolerated
failure rate still passes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from locust.runners import STATE_CLEANUP, STATE_STOPPED, STATE_STOPPING

from load_scenario.checks import CheckTally
from load_scenario.errors import EXIT_PASS, EXIT_SCRIPT_ERROR, EXIT_THRESHOLD_BREACH
from load_scenario.metrics import RunMetrics
from load_scenario.thresholds import (
    Threshold,
    ThresholdResult,
    evaluate_thresholds,
    format_summary,
    required_percentiles,
    run_passed,
)

logger = logging.getLogger(__name__)

_FINISHED_STATES = (STATE_STOPPING, STATE_STOPPED, STATE_CLEANUP)


class ThresholdGate:
    """
    Evaluates thresholds against a running or finished Locust environment.

    Attributes:
        thresholds: Thresholds to enforce, in declaration order.
        tally: Check tally feeding the ``checks`` and ``iterations`` metrics.
        interval: Seconds between abort-on-fail evaluations.
        aborted: Failed results that stopped the run early, if any.
        results: Results of the final evaluation, once ``on_quitting`` ran.
    """

    def __init__(
        self,
        thresholds: Sequence[Threshold],
        tally: CheckTally | None = None,
        *,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.thresholds = tuple(thresholds)
        self.tally = tally
        self.interval = interval
        self._clock = clock
        self._percentiles = required_percentiles(self.thresholds)
        self._started_at: float | None = None
        self.aborted: list[ThresholdResult] = []
        self.results: list[ThresholdResult] = []

    @property
    def abort_thresholds(self) -> tuple[Threshold, ...]:
        return tuple(t for t in self.thresholds if t.abort_on_fail)

    def snapshot(self, stats: Any) -> RunMetrics:
        return RunMetrics.from_request_stats(stats, self.tally, self._percentiles)

    def evaluate(self, stats: Any) -> list[ThresholdResult]:
        return evaluate_thresholds(self.thresholds, self.snapshot(stats))

    def abort_failures(self, stats: Any, elapsed: float) -> list[ThresholdResult]:
        """
        Evaluate abort-on-fail thresholds whose delay has elapsed.

        A metric that has not been sampled yet is not treated as a
        failure here; only the final evaluation fails unsampled metrics.
        """
        due = [t for t in self.abort_thresholds if elapsed >= t.delay_abort_eval]
        if not due:
            return []
        results = evaluate_thresholds(due, self.snapshot(stats))
        return [r for r in results if not r.passed and r.actual is not None]

    def on_test_start(self, environment: Any = None, **_kwargs: Any) -> None:
        self._started_at = self._clock()

    def on_quitting(self, environment: Any, **_kwargs: Any) -> None:
        self.results = self.evaluate(environment.stats)
        logger.info("Threshold results:\n%s", format_summary(self.results))

        if environment.process_exit_code == EXIT_SCRIPT_ERROR:
            return
        if self.aborted or not run_passed(self.results):
            environment.process_exit_code = EXIT_THRESHOLD_BREACH
        else:
            environment.process_exit_code = EXIT_PASS

    def watch(self, environment: Any) -> None:
        """Poll abort-on-fail thresholds until the runner stops or one fails."""
        runner = environment.runner
        while runner.state not in _FINISHED_STATES:
            time.sleep(self.interval)
            if self._started_at is None:
                continue

            failures = self.abort_failures(runner.stats, self._clock() - self._started_at)
            if failures:
                for result in failures:
                    logger.error(
                        "Threshold %s crossed (actual %s), aborting the run",
                        result.threshold,
                        result.actual,
                    )
                self.aborted = failures
                environment.process_exit_code = EXIT_THRESHOLD_BREACH
                runner.quit()
                return
