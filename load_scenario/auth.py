"""
Bearer-token acquisition for authenticated targets.

The target's login endpoint (``POST /api/auth``) accepts a JSON body of
``{"username": ..., "password": ...}`` and answers ``{"token": ...}``;
unknown users are registered on first login.  The locustfile calls
:func:`fetch_token` once at test start when the configured token is
still the placeholder, so every iteration then carries a real
credential.

The request goes through plain ``requests`` rather than a Locust
session so that the login does not show up in the run's statistics
and cannot skew the latency or failure-rate thresholds.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from load_scenario.errors import AuthError

logger = logging.getLogger(__name__)


def _safe_json(response: Any) -> dict[str, Any]:
    """Return response JSON as a dict, or ``{}`` if parsing fails."""
    try:
        data = response.json()
    except ValueError:
        return {}

    if isinstance(data, dict):
        return data
    return {}


def fetch_token(
    auth_url: str,
    username: str,
    password: str,
    *,
    timeout: float = 10.0,
    session: requests.Session | None = None,
) -> str:
    """
    Log in and return a bearer token.

    Args:
        auth_url: Absolute URL of the login endpoint.
        username: Login name (an email address for the reference target).
        password: Plain-text password.
        timeout: Seconds to wait for the login response.
        session: Optional session to reuse; a bare ``requests.post`` is
            used otherwise.

    Returns:
        The token string from the response body.

    Raises:
        AuthError: On a transport error, a non-200 status, or a response
            body without a token.
    """
    poster = session.post if session is not None else requests.post
    try:
        response = poster(
            auth_url,
            json={"username": username, "password": password},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise AuthError(f"Login request to {auth_url} failed: {exc}") from exc

    if response.status_code != 200:
        raise AuthError(f"Expected 200 from {auth_url}, got {response.status_code}")

    token = _safe_json(response).get("token")
    if not isinstance(token, str) or not token:
        raise AuthError(f"Login response from {auth_url} is missing a token")

    logger.info("Obtained bearer token for %s from %s", username, auth_url)
    return token
