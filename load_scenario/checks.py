"""
Named per-iteration assertions and their run-wide tally.

A check is a boolean predicate evaluated against one iteration's
response.  Unlike a threshold it never stops anything on its own: its
outcome is recorded, aggregated over the run, and exposed to thresholds
as the ``checks`` rate metric.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one named check for one iteration."""

    name: str
    passed: bool


def check(value: Any, predicates: Mapping[str, Callable[[Any], bool]]) -> list[CheckResult]:
    """
    Evaluate each named predicate against *value*.

    Results are returned in the mapping's order; a predicate returning a
    truthy non-bool value counts as passed.
    """
    return [CheckResult(name=name, passed=bool(predicate(value))) for name, predicate in predicates.items()]


class CheckTally:
    """
    Thread-safe aggregate of check outcomes for a whole run.

    Each call to :meth:`record` counts as one iteration, so the tally
    also provides the ``iterations`` metric.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._passes: dict[str, int] = {}
        self._fails: dict[str, int] = {}
        self._iterations = 0

    def record(self, results: Iterable[CheckResult]) -> None:
        with self._lock:
            self._iterations += 1
            for result in results:
                bucket = self._passes if result.passed else self._fails
                bucket[result.name] = bucket.get(result.name, 0) + 1

    @property
    def iterations(self) -> int:
        with self._lock:
            return self._iterations

    @property
    def passes(self) -> int:
        with self._lock:
            return sum(self._passes.values())

    @property
    def fails(self) -> int:
        with self._lock:
            return sum(self._fails.values())

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._passes.values()) + sum(self._fails.values())

    @property
    def rate(self) -> float:
        """Fraction of checks that passed, ``0.0`` when nothing was recorded."""
        with self._lock:
            passes = sum(self._passes.values())
            total = passes + sum(self._fails.values())
        return passes / total if total else 0.0

    def by_name(self) -> dict[str, tuple[int, int]]:
        """Return ``{name: (passes, fails)}`` for every check seen so far."""
        with self._lock:
            names = sorted(set(self._passes) | set(self._fails))
            return {name: (self._passes.get(name, 0), self._fails.get(name, 0)) for name in names}

    def reset(self) -> None:
        with self._lock:
            self._passes.clear()
            self._fails.clear()
            self._iterations = 0
