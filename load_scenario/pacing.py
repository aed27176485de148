"""
Arrival-rate pacing and the load shape that drives a run.

Locust is a closed-model tool: each user loops ``task -> wait``.  To get
an *open* constant-arrival-rate model out of it, two pieces cooperate:

- :func:`constant_arrival_rate` is a ``wait_time`` function.  Every user
  paces itself to one iteration per ``user_count / rate`` seconds, so
  the aggregate start rate holds at the target however many users are
  alive.
- :class:`ScenarioLoadShape` decides how many users are alive.  It
  starts at the pre-allocated count and, using Little's law on the
  observed iteration time, grows the pool towards ``max_concurrency``
  when the rate cannot be sustained.  After ``duration`` it returns
  ``None`` and Locust stops the run.

When even ``max_concurrency`` users cannot sustain the rate the shape
logs a single saturation warning and keeps running at the bound; the
achieved rate then falls short of the target.
"""

from __future__ import annotations

import logging
import math
import random
import time
from collections.abc import Callable
from typing import Any

from locust import LoadTestShape

from load_scenario.config import Executor, ScenarioConfig

logger = logging.getLogger(__name__)

# Monotonic time the user started, or will start, its current iteration.
ARRIVAL_ATTRIBUTE = "_arrival_started_at"


def _alive_users(user: Any) -> int:
    runner = getattr(user.environment, "runner", None)
    if runner is None:
        return 1
    return max(runner.user_count, 1)


def constant_arrival_rate(iterations_per_second: float) -> Callable[[Any], float]:
    """
    Return a Locust ``wait_time`` function holding a fixed aggregate rate.

    Each user schedules its next start ``user_count / iterations_per_second``
    seconds after its previous one.  An iteration that overruns its slot
    starts the next one immediately; missed slots are not made up.  Call
    :func:`mark_first_arrival` when a user is about to run its first
    iteration, so that iteration's own duration is subtracted from the
    first wait too.

    Raises:
        ValueError: If *iterations_per_second* is not positive.
    """
    if iterations_per_second <= 0:
        raise ValueError("iterations_per_second must be greater than zero")

    def wait_time_func(user: Any) -> float:
        interval = _alive_users(user) / iterations_per_second
        now = time.monotonic()
        started_at = getattr(user, ARRIVAL_ATTRIBUTE, None)
        if started_at is None:
            wait = interval
        else:
            wait = max(0.0, started_at + interval - now)
        setattr(user, ARRIVAL_ATTRIBUTE, now + wait)
        return wait

    return wait_time_func


def mark_first_arrival(user: Any) -> None:
    """Record that *user* starts its first iteration now."""
    setattr(user, ARRIVAL_ATTRIBUTE, time.monotonic())


def stagger_delay(user_count: int, iterations_per_second: float) -> float:
    """Random initial offset spreading users' first iterations over one interval."""
    if iterations_per_second <= 0:
        return 0.0
    return random.uniform(0.0, max(user_count, 1) / iterations_per_second)


def required_concurrency(
    iterations_per_second: float,
    iteration_seconds: float,
    pre_allocated: int,
    maximum: int,
) -> tuple[int, bool]:
    """
    Users needed to sustain a rate, by Little's law, clamped to the bounds.

    Args:
        iterations_per_second: Target start rate.
        iteration_seconds: Observed mean wall time of one iteration.
        pre_allocated: Lower bound on the pool.
        maximum: Upper bound on the pool.

    Returns:
        ``(users, saturated)`` where *saturated* is ``True`` when the
        unclamped requirement exceeds *maximum*.
    """
    needed = math.ceil(iterations_per_second * max(iteration_seconds, 0.0))
    return min(max(needed, pre_allocated), maximum), needed > maximum


class ScenarioLoadShape(LoadTestShape):
    """
    Load shape driven by a :class:`ScenarioConfig`.

    Concrete subclasses (in the locustfile) set :attr:`scenario` and
    :attr:`pause`.  The user count never shrinks during a run, matching
    an executor that keeps already-allocated users.
    """

    abstract = True

    scenario: ScenarioConfig = ScenarioConfig()
    pause: float = 0.0

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._users = self.scenario.initial_concurrency
        self._saturation_reported = False

    def observed_iteration_seconds(self) -> float | None:
        """Mean iteration time so far, or ``None`` before the first response."""
        runner = getattr(self, "runner", None)
        if runner is None:
            return None
        total = runner.stats.total
        if total.num_requests == 0:
            return None
        return total.avg_response_time / 1000.0 + self.pause

    def target_users(self) -> int:
        scenario = self.scenario
        if scenario.executor is Executor.CONSTANT_VUS:
            return scenario.vus

        iteration_seconds = self.observed_iteration_seconds()
        if iteration_seconds is None:
            return self._users

        users, saturated = required_concurrency(
            scenario.iterations_per_second,
            iteration_seconds,
            scenario.pre_allocated_concurrency,
            scenario.max_concurrency,
        )
        if saturated and not self._saturation_reported:
            logger.warning(
                "Insufficient concurrency: %.1f iterations/s at %.1f ms per iteration "
                "needs more than max_concurrency=%d users",
                scenario.iterations_per_second,
                iteration_seconds * 1000.0,
                scenario.max_concurrency,
            )
            self._saturation_reported = True
        self._users = max(self._users, users)
        return self._users

    def tick(self) -> tuple[int, float] | None:
        if self.get_run_time() >= self.scenario.duration:
            return None
        users = self.target_users()
        return users, float(max(users, 1))
