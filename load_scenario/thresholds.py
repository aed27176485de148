"""
Threshold expressions and their evaluation.

A threshold is a pass/fail predicate over one aggregated run metric,
written in the compact k6 form ``<aggregation> <operator> <limit>``::

    http_req_duration: p(95)<50      # 95th percentile below 50 ms
    http_req_failed:   rate<0.0001   # fewer than 0.01 % failed requests

Expressions are parsed once, when the scenario configuration is loaded,
so a typo fails the run before any traffic is generated.  Evaluation is
a pure function of a :class:`~load_scenario.metrics.RunMetrics` snapshot
and can therefore run at the end of a Locust run, periodically during
it, or offline against a stats CSV.

Key Concepts Demonstrated:
- Declarative pass/fail gates parsed up-front into typed objects
- Metric-kind validation (percentiles only on trends, etc.)
- Human-readable summary table printed for CI logs
"""

from __future__ import annotations

import operator
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from load_scenario.errors import ThresholdError
from load_scenario.metrics import COUNTER, METRIC_KINDS, RATE, TREND, RunMetrics, percentile_key

_EXPRESSION = re.compile(
    r"""^\s*
    (?P<aggregation>avg|min|max|med|count|rate|p\(\s*(?P<percentile>\d+(?:\.\d+)?)\s*\))
    \s*(?P<operator>===|==|!=|<=|>=|<|>)\s*
    (?P<limit>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)
    \s*$""",
    re.VERBOSE,
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "===": operator.eq,
    "!=": operator.ne,
}

_KIND_AGGREGATIONS: dict[str, frozenset[str]] = {
    TREND: frozenset({"avg", "min", "max", "med", "p"}),
    RATE: frozenset({"rate"}),
    COUNTER: frozenset({"count", "rate"}),
}


@dataclass(frozen=True)
class Threshold:
    """
    A parsed threshold on a single metric.

    Attributes:
        metric: Metric name, one of :data:`~load_scenario.metrics.METRIC_KINDS`.
        expression: The original expression text, kept for reporting.
        aggregation: Aggregation key looked up in the metrics snapshot
            (``avg``, ``rate``, ``p(95)``, ...).
        operator: Comparison operator as written.
        limit: Right-hand side of the comparison.
        abort_on_fail: Stop the run as soon as this threshold fails.
        delay_abort_eval: Seconds to wait after test start before the
            abort check begins, so early noise does not end the run.
    """

    metric: str
    expression: str
    aggregation: str
    operator: str
    limit: float
    abort_on_fail: bool = False
    delay_abort_eval: float = 0.0

    @classmethod
    def parse(
        cls,
        metric: str,
        expression: str,
        *,
        abort_on_fail: bool = False,
        delay_abort_eval: float = 0.0,
    ) -> Threshold:
        """
        Parse *expression* for *metric* into a :class:`Threshold`.

        Raises:
            ThresholdError: If the metric is unknown, the expression does
                not match the grammar, or the aggregation does not apply
                to the metric's kind.
        """
        kind = METRIC_KINDS.get(metric)
        if kind is None:
            known = ", ".join(sorted(METRIC_KINDS))
            raise ThresholdError(f"Unknown threshold metric '{metric}' (known: {known})")

        if not isinstance(expression, str):
            raise ThresholdError(f"Threshold for '{metric}' must be a string, got {expression!r}")
        match = _EXPRESSION.match(expression)
        if match is None:
            raise ThresholdError(f"Cannot parse threshold '{expression}' for '{metric}'")

        percentile = match.group("percentile")
        if percentile is not None:
            value = float(percentile)
            if not 0.0 <= value <= 100.0:
                raise ThresholdError(f"Percentile out of range in '{expression}'")
            aggregation = percentile_key(value)
            family = "p"
        else:
            aggregation = family = match.group("aggregation")

        if family not in _KIND_AGGREGATIONS[kind]:
            raise ThresholdError(
                f"Aggregation '{match.group('aggregation')}' is not valid for {kind} metric '{metric}'"
            )
        if delay_abort_eval < 0:
            raise ThresholdError(f"delay_abort_eval must be >= 0 for '{metric}'")

        return cls(
            metric=metric,
            expression=expression.strip(),
            aggregation=aggregation,
            operator=match.group("operator"),
            limit=float(match.group("limit")),
            abort_on_fail=abort_on_fail,
            delay_abort_eval=delay_abort_eval,
        )

    @property
    def percentile(self) -> float | None:
        """Percentile this threshold reads, or ``None`` for other aggregations."""
        if self.aggregation.startswith("p("):
            return float(self.aggregation[2:-1])
        return None

    def evaluate(self, metrics: RunMetrics) -> ThresholdResult:
        """Evaluate against *metrics*; an unsampled metric fails the threshold."""
        actual = metrics.get(self.metric, self.aggregation)
        if actual is None:
            return ThresholdResult(threshold=self, actual=None, passed=False)
        passed = _OPERATORS[self.operator](actual, self.limit)
        return ThresholdResult(threshold=self, actual=actual, passed=passed)

    def __str__(self) -> str:
        return f"{self.metric}: {self.expression}"


@dataclass(frozen=True)
class ThresholdResult:
    """Outcome of evaluating one threshold."""

    threshold: Threshold
    actual: float | None
    passed: bool


DEFAULT_THRESHOLDS: tuple[Threshold, ...] = (
    Threshold.parse("http_req_duration", "p(95)<50"),
    Threshold.parse("http_req_failed", "rate<0.0001"),
)


def required_percentiles(thresholds: Iterable[Threshold]) -> set[float]:
    """Collect the percentiles the thresholds need computed from live stats."""
    return {t.percentile for t in thresholds if t.percentile is not None}


def evaluate_thresholds(
    thresholds: Iterable[Threshold], metrics: RunMetrics
) -> list[ThresholdResult]:
    """Evaluate every threshold, preserving declaration order."""
    return [threshold.evaluate(metrics) for threshold in thresholds]


def run_passed(results: Iterable[ThresholdResult]) -> bool:
    """A run passes only when every threshold passed."""
    return all(result.passed for result in results)


def _format_actual(value: float | None) -> str:
    if value is None:
        return "n/a"
    if abs(value) < 1:
        return f"{value:.4f}"
    return f"{value:.2f}"


def format_summary(results: Sequence[ThresholdResult]) -> str:
    """Render a fixed-width results table followed by an overall verdict."""
    lines = [
        "Performance Threshold Check",
        "-" * 66,
        f"{'Metric':<22}{'Threshold':>16}{'Actual':>16}{'Status':>12}",
        "-" * 66,
    ]
    for result in results:
        status = "PASS" if result.passed else "FAIL"
        lines.append(
            f"{result.threshold.metric:<22}"
            f"{result.threshold.expression:>16}"
            f"{_format_actual(result.actual):>16}"
            f"{status:>12}"
        )
    lines.append("-" * 66)
    lines.append(f"Overall: {'PASS' if run_passed(results) else 'FAIL'}")
    return "\n".join(lines)
