"""
HS256 bearer tokens for the reference target.

Token structure (claims):
    - ``sub``   -- the user's primary key as a decimal string.
    - ``email`` -- the login name.
    - ``iat``   -- issued-at timestamp (UTC epoch seconds).
    - ``exp``   -- expiration timestamp (UTC epoch seconds).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

REQUIRED_TOKEN_CLAIMS = ["sub", "email", "iat", "exp"]


def create_token(user_id: int, email: str, secret: str, ttl_minutes: int) -> str:
    """
    Create an HS256-signed JWT for *user_id*.

    Raises:
        ValueError: If *user_id* is not positive or *email* is blank.
    """
    if int(user_id) <= 0:
        raise ValueError("user_id must be a positive integer")
    if not isinstance(email, str) or not email.strip():
        raise ValueError("email must be a non-empty string")

    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(int(user_id)),
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=int(ttl_minutes))).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def decode_user_id(token: str, secret: str) -> int:
    """
    Verify *token* and return the user id from its ``sub`` claim.

    Raises:
        jwt.InvalidTokenError: If the token is malformed, expired, signed
            with another key or algorithm, or carries a non-numeric ``sub``.
    """
    payload = jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        options={"require": REQUIRED_TOKEN_CLAIMS},
    )
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise jwt.InvalidTokenError("Invalid sub claim") from exc
    if user_id <= 0:
        raise jwt.InvalidTokenError("Invalid sub claim")
    return user_id
