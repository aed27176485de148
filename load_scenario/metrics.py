"""
Aggregated run metrics that thresholds are evaluated against.

A :class:`RunMetrics` snapshot maps a metric name (``http_req_duration``,
``http_req_failed``, ...) to the aggregations available for it.  It can
be built from two sources:

- Locust's live :class:`~locust.stats.RequestStats` at the end of a run
  (or periodically while it is running, for abort-on-fail thresholds)
- the ``Aggregated`` row of the ``*_stats.csv`` file Locust writes with
  ``--csv``, for the offline ``check`` command

Metric names follow the k6 vocabulary so that threshold declarations
read the same as the scenario they replace.  Durations are milliseconds
and rates are fractions in ``[0, 1]``.

Key Concepts Demonstrated:
- One snapshot type shared by live and offline evaluation
- Tolerant CSV parsing across Locust column-name variants
- Absent metrics instead of fabricated zeros when nothing was sampled
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

TREND = "trend"
RATE = "rate"
COUNTER = "counter"

HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
HTTP_REQS = "http_reqs"
CHECKS = "checks"
ITERATIONS = "iterations"

# Metric name -> metric kind.  The kind decides which aggregations apply.
METRIC_KINDS: dict[str, str] = {
    HTTP_REQ_DURATION: TREND,
    HTTP_REQ_FAILED: RATE,
    CHECKS: RATE,
    HTTP_REQS: COUNTER,
    ITERATIONS: COUNTER,
}

# Metrics recoverable from a Locust stats CSV; checks and iterations are not written.
CSV_METRICS: frozenset[str] = frozenset({HTTP_REQ_DURATION, HTTP_REQ_FAILED, HTTP_REQS})

# Percentiles Locust writes to its stats CSV by default.
DEFAULT_PERCENTILES: tuple[float, ...] = (
    50.0, 66.0, 75.0, 80.0, 90.0, 95.0, 98.0, 99.0, 99.9, 99.99, 100.0,
)


def percentile_key(percentile: float) -> str:
    """Return the canonical aggregation key for *percentile*, e.g. ``p(95)``."""
    return f"p({percentile:g})"


@dataclass
class RunMetrics:
    """Snapshot of aggregated metrics for a run, keyed by metric name."""

    values: dict[str, dict[str, float]] = field(default_factory=dict)

    def has(self, metric: str, aggregation: str) -> bool:
        return aggregation in self.values.get(metric, {})

    def get(self, metric: str, aggregation: str) -> float | None:
        """Return the aggregated value, or ``None`` when it was never sampled."""
        return self.values.get(metric, {}).get(aggregation)

    @classmethod
    def from_request_stats(
        cls,
        stats: Any,
        tally: Any = None,
        percentiles: Iterable[float] = (),
    ) -> RunMetrics:
        """
        Build a snapshot from Locust's live request statistics.

        Args:
            stats: A :class:`locust.stats.RequestStats` instance.  Only
                ``stats.total`` is read, so every endpoint is folded into
                one aggregate, as the thresholds expect.
            tally: Optional :class:`~load_scenario.checks.CheckTally`
                supplying the ``checks`` and ``iterations`` metrics.
            percentiles: Extra percentiles to compute on top of
                :data:`DEFAULT_PERCENTILES` (e.g. ``p(97.5)`` from a
                threshold).

        Returns:
            A populated :class:`RunMetrics`.  Metrics without samples are
            left out entirely.
        """
        total = stats.total
        values: dict[str, dict[str, float]] = {}
        elapsed = _elapsed_seconds(total)

        if total.num_requests > 0:
            duration: dict[str, float] = {
                "avg": float(total.avg_response_time),
                "min": float(total.min_response_time or 0),
                "max": float(total.max_response_time),
                "med": float(total.median_response_time),
            }
            for percentile in sorted(set(DEFAULT_PERCENTILES) | set(percentiles)):
                duration[percentile_key(percentile)] = float(
                    total.get_response_time_percentile(percentile / 100.0)
                )
            values[HTTP_REQ_DURATION] = duration
            values[HTTP_REQ_FAILED] = {"rate": float(total.fail_ratio)}
            values[HTTP_REQS] = {
                "count": float(total.num_requests),
                "rate": _per_second(total.num_requests, elapsed),
            }

        if tally is not None:
            if tally.total > 0:
                values[CHECKS] = {"rate": tally.rate}
            iterations = tally.iterations
            if iterations > 0:
                # Shares the request clock so both counter rates agree.
                values[ITERATIONS] = {
                    "count": float(iterations),
                    "rate": _per_second(iterations, elapsed),
                }

        return cls(values=values)

    @classmethod
    def from_stats_row(cls, row: Mapping[str, Any]) -> RunMetrics:
        """
        Build a snapshot from the ``Aggregated`` row of a Locust stats CSV.

        Only the HTTP metrics can be recovered from the CSV; ``checks``
        and ``iterations`` are not written by Locust and stay absent.

        Raises:
            ValueError: If the request or failure counts are missing or
                non-numeric.
        """
        request_count = _parse_float(row.get("Request Count"), "Request Count")
        failure_count = _parse_float(row.get("Failure Count"), "Failure Count")
        values: dict[str, dict[str, float]] = {}
        if request_count <= 0:
            return cls(values=values)

        duration: dict[str, float] = {}
        for aggregation, column in (
            ("avg", "Average Response Time"),
            ("min", "Min Response Time"),
            ("max", "Max Response Time"),
            ("med", "Median Response Time"),
        ):
            if row.get(column) not in (None, ""):
                duration[aggregation] = _parse_float(row[column], column)
        for column, raw in row.items():
            percentile = _percentile_from_column(column)
            if percentile is not None and raw not in (None, "", "N/A"):
                duration[percentile_key(percentile)] = _parse_float(raw, column)

        values[HTTP_REQ_DURATION] = duration
        values[HTTP_REQ_FAILED] = {"rate": failure_count / request_count}
        http_reqs = {"count": request_count}
        if row.get("Requests/s") not in (None, ""):
            http_reqs["rate"] = _parse_float(row["Requests/s"], "Requests/s")
        values[HTTP_REQS] = http_reqs
        return cls(values=values)


def _percentile_from_column(column: str | None) -> float | None:
    """Map Locust CSV headers such as ``95%``, ``95%ile`` or ``p95`` to 95.0."""
    if not column:
        return None
    text = column.strip().lower()
    for suffix in ("th percentile", "%ile", "%"):
        if text.endswith(suffix):
            text = text[: -len(suffix)]
            break
    else:
        if not text.startswith("p"):
            return None
        text = text[1:]
    try:
        return float(text)
    except ValueError:
        return None


def _parse_float(value: Any, field_name: str) -> float:
    """
    Coerce *value* to ``float``, stripping ``%`` suffixes if present.

    Raises:
        ValueError: If the value is missing, empty, or non-numeric.
    """
    if value is None:
        raise ValueError(f"Missing field: {field_name}")

    text = str(value).strip().replace("%", "")
    if text == "":
        raise ValueError(f"Empty value for field: {field_name}")

    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(f"Non-numeric value for {field_name}: {value}") from exc


def _elapsed_seconds(total: Any) -> float:
    """Seconds between the first and last logged request, ``0.0`` if none."""
    if not total.num_requests or total.last_request_timestamp is None:
        return 0.0
    return max(total.last_request_timestamp - total.start_time, 0.0)


def _per_second(count: int | float, elapsed: float) -> float:
    return count / elapsed if elapsed > 0 else 0.0
