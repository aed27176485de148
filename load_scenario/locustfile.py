"""
Locust entrypoint for the scenario.

This is the file the ``locust`` CLI loads.  It reads the scenario
configuration once at import, then maps it onto Locust:

- :class:`TargetEndpointUser` runs the iteration body with the
  arrival-rate ``wait_time``
- :class:`ScenarioShape` controls the user count and the run length, so
  ``-u``, ``-r`` and ``-t`` are not needed (and are ignored)
- event listeners acquire a token at test start, honour the graceful
  stop, and turn threshold results into the process exit code

Usage examples::

    # Defaults: 1000 it/s for 10 s against http://localhost:8080/api/info
    locust -f load_scenario/locustfile.py --headless

    # Custom scenario file, CSV stats for the offline gate
    LOAD_SCENARIO_CONFIG=scenario.yml \\
        locust -f load_scenario/locustfile.py --headless --csv results/run

    # Same thing through the project CLI
    python -m load_scenario run --config scenario.yml --csv results/run
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import gevent
from locust import HttpUser, constant, events, task
from locust.runners import WorkerRunner

# Locust may be invoked from any directory; the project root must be on
# ``sys.path`` for the ``load_scenario`` imports below to resolve.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from load_scenario import pacing  # noqa: E402
from load_scenario.auth import fetch_token  # noqa: E402
from load_scenario.checks import CheckTally  # noqa: E402
from load_scenario.config import Executor, load_config  # noqa: E402
from load_scenario.errors import EXIT_SCRIPT_ERROR, AuthError, ConfigError  # noqa: E402
from load_scenario.gate import ThresholdGate  # noqa: E402
from load_scenario.iteration import build_request_spec, run_iteration  # noqa: E402

logger = logging.getLogger(__name__)

try:
    CONFIG = load_config()
except ConfigError as exc:
    logger.error("Invalid scenario configuration: %s", exc)
    raise SystemExit(EXIT_SCRIPT_ERROR) from exc

CHECKS = CheckTally()
GATE = ThresholdGate(CONFIG.thresholds, CHECKS)

_ARRIVAL_RATE = CONFIG.scenario.executor is Executor.CONSTANT_ARRIVAL_RATE


class TargetEndpointUser(HttpUser):
    """One virtual user repeatedly running the iteration body."""

    host = CONFIG.target.host
    token = CONFIG.target.token

    if _ARRIVAL_RATE:
        wait_time = pacing.constant_arrival_rate(CONFIG.scenario.iterations_per_second)
    else:
        wait_time = constant(0)

    def on_start(self) -> None:
        """Spread first iterations over one pacing interval instead of bursting."""
        if _ARRIVAL_RATE:
            gevent.sleep(
                pacing.stagger_delay(
                    self.environment.runner.user_count,
                    CONFIG.scenario.iterations_per_second,
                )
            )
            pacing.mark_first_arrival(self)

    @task
    def request_target(self) -> None:
        spec = build_request_spec(CONFIG.target, self.token)
        CHECKS.record(run_iteration(self.client, spec, pause=CONFIG.target.pause))


class ScenarioShape(pacing.ScenarioLoadShape):
    """Run length and user count taken from the scenario configuration."""

    abstract = False
    scenario = CONFIG.scenario
    pause = CONFIG.target.pause


@events.init.add_listener
def _configure_environment(environment, **_kwargs):
    """Apply the graceful stop and start the abort-on-fail watcher."""
    if not environment.stop_timeout:
        environment.stop_timeout = CONFIG.scenario.graceful_stop

    runner = environment.runner
    if GATE.abort_thresholds and runner is not None and not isinstance(runner, WorkerRunner):
        gevent.spawn(GATE.watch, environment)


@events.test_start.add_listener
def _acquire_token(environment, **_kwargs):
    """Replace a placeholder token by logging in, when credentials are configured."""
    target = CONFIG.target
    CHECKS.reset()
    if not target.has_placeholder_token:
        return
    if not target.can_login:
        logger.warning(
            "Using the placeholder bearer token; an authenticated target will answer 401"
        )
        return

    try:
        TargetEndpointUser.token = fetch_token(
            target.auth_url, target.username, target.password, timeout=target.timeout
        )
    except AuthError as exc:
        logger.error("Cannot start the run: %s", exc)
        environment.process_exit_code = EXIT_SCRIPT_ERROR
        gevent.spawn(environment.runner.quit)


events.test_start.add_listener(GATE.on_test_start)
events.quitting.add_listener(GATE.on_quitting)
