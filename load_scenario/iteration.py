"""
The unit of work executed once per iteration.

Every iteration builds a fresh :class:`RequestSpec`, issues one ``GET``
to the target, records the ``status is 200`` check, and then pauses
briefly.  The pause keeps an iteration from completing in zero wall
clock time, which would let a user spin without yielding.

Failure handling is entirely in-band: a non-200 status or a transport
error (which Locust reports as status ``0``) fails the check and marks
the request as failed in Locust's statistics.  Nothing is raised, so a
bad response never aborts the user or the run; it only moves the
``http_req_failed`` and ``checks`` metrics.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any
from urllib.parse import urlparse

from load_scenario.checks import CheckResult, check
from load_scenario.config import TargetConfig

STATUS_CHECK = "status is 200"

STATUS_PREDICATES: Mapping[str, Callable[[Any], bool]] = {
    STATUS_CHECK: lambda response: response.status_code == 200,
}


@dataclass(frozen=True)
class RequestSpec:
    """A single HTTP request as issued by one iteration."""

    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    method: str = "GET"
    name: str | None = None
    timeout: float = 60.0


def bearer_headers(token: str) -> dict[str, str]:
    """Build the one header the target expects: ``Authorization: Bearer <token>``."""
    return {"Authorization": f"Bearer {token}"}


def build_request_spec(target: TargetConfig, token: str | None = None) -> RequestSpec:
    """
    Build the request for one iteration.

    Args:
        target: Target configuration supplying the URL and timeout.
        token: Bearer token to send; defaults to ``target.token``.

    Returns:
        A :class:`RequestSpec` whose stats ``name`` is the URL path, so
        every iteration lands in the same Locust stats entry.
    """
    return RequestSpec(
        url=target.url,
        headers=MappingProxyType(bearer_headers(token if token is not None else target.token)),
        method="GET",
        name=urlparse(target.url).path or "/",
        timeout=target.timeout,
    )


def run_iteration(
    client: Any,
    spec: RequestSpec,
    *,
    pause: float = 0.001,
    sleep: Callable[[float], None] = time.sleep,
) -> list[CheckResult]:
    """
    Issue *spec* through *client*, check the status, and pause.

    Args:
        client: A Locust :class:`~locust.clients.HttpSession` (or any
            object with the same ``request(..., catch_response=True)``
            context-manager protocol).
        spec: The request to issue.
        pause: Seconds to sleep after the check; ``0`` skips the sleep.
        sleep: Sleep function, patched to cooperative by Locust's gevent
            monkey-patching.

    Returns:
        Exactly one :class:`CheckResult` per entry in
        :data:`STATUS_PREDICATES`.
    """
    with client.request(
        spec.method,
        spec.url,
        name=spec.name,
        headers=dict(spec.headers),
        timeout=spec.timeout,
        catch_response=True,
    ) as response:
        results = check(response, STATUS_PREDICATES)
        if all(result.passed for result in results):
            response.success()
        else:
            response.failure(f"Expected 200, got {response.status_code}")

    if pause > 0:
        sleep(pause)
    return results
