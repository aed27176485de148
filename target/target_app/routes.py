"""
Reference target API endpoints.

Endpoints (mounted under ``/api``):
    GET  /health -- Liveness probe.
    POST /auth   -- Log in, registering the account on first use, and
                    receive a bearer token.
    GET  /info   -- Balance, inventory and coin history of the caller.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import jwt as pyjwt
from flask import Blueprint, Response, current_app, jsonify, request
from sqlalchemy import select

from . import db
from .models import User
from .tokens import create_token, decode_user_id

api_bp = Blueprint("target_api", __name__)

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def _json_error(message: str, status_code: int) -> tuple[Response, int]:
    """Build a ``{"error": ...}`` response with *status_code*."""
    return jsonify({"error": message}), status_code


def _extract_bearer_token() -> str | None:
    """Return the token from ``Authorization: Bearer <token>``, or ``None``."""
    auth_header = request.headers.get("Authorization", "")
    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1].strip():
        return None
    return parts[1].strip()


def _validate_credentials(data: dict[str, Any]) -> str | None:
    username = data.get("username")
    password = data.get("password")
    if not isinstance(username, str) or not _EMAIL.match(username.strip()):
        return "'username' must be an email address"
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        return f"'password' must be at least {MIN_PASSWORD_LENGTH} characters"
    return None


@api_bp.route("/health", methods=["GET"])
def health_check() -> tuple[Response, int]:
    return jsonify({"status": "healthy", "service": "target"}), 200


@api_bp.route("/auth", methods=["POST"])
def authenticate() -> tuple[Response, int]:
    """
    Issue a token for the given credentials.

    An unknown username is registered on the spot with the configured
    starting balance, mirroring the shop's login-or-register flow.

    Returns:
        200 with ``token`` on success.
        400 if the body is not valid JSON or fails validation.
        401 if the password does not match an existing account.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("invalid request", 400)
    problem = _validate_credentials(data)
    if problem:
        return _json_error(problem, 400)

    email = data["username"].strip()
    user = db.session.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(email=email, coin_balance=current_app.config["STARTING_COINS"])
        user.set_password(data["password"])
        db.session.add(user)
        db.session.commit()
        logger.info("Registered user %s on first login", user.id)
    elif not user.check_password(data["password"]):
        return _json_error("invalid credentials", 401)

    token = create_token(
        user_id=user.id,
        email=user.email,
        secret=current_app.config["JWT_SECRET"],
        ttl_minutes=current_app.config["TOKEN_TTL_MINUTES"],
    )
    return jsonify({"token": token}), 200


@api_bp.route("/info", methods=["GET"])
def info() -> tuple[Response, int]:
    """
    Return the caller's balance, inventory and coin history.

    Returns:
        200 with the info payload.
        401 if the bearer token is missing, malformed, invalid, or names
        an unknown user.
    """
    token = _extract_bearer_token()
    if token is None:
        return _json_error("missing token", 401)

    try:
        user_id = decode_user_id(token, current_app.config["JWT_SECRET"])
    except pyjwt.InvalidTokenError:
        return _json_error("invalid token", 401)

    user = db.session.get(User, user_id)
    if user is None:
        return _json_error("unauthorized", 401)
    return jsonify(user.to_info()), 200
