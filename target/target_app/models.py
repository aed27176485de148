"""
Database models for the reference target.

Only :class:`User` is modelled: the account a token is issued for and
whose balance ``GET /api/info`` reports.  Passwords are stored as
Werkzeug hashes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from werkzeug.security import check_password_hash, generate_password_hash

from . import db


class User(db.Model):
    """
    A shop account.

    Attributes:
        id: Auto-incrementing integer primary key, carried as the token's
            ``sub`` claim.
        email: Unique login name.
        password_hash: Werkzeug-generated hash of the password.
        coin_balance: Coins available to spend.
        created_at: Timestamp of account creation, stored as UTC.
    """

    __tablename__ = "users"

    id: int = db.Column(db.Integer, primary_key=True)
    email: str = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash: str = db.Column(db.String(256), nullable=False)
    coin_balance: int = db.Column(db.Integer, nullable=False, default=0)
    created_at: datetime = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_info(self) -> dict[str, Any]:
        """Serialise as the ``GET /api/info`` payload."""
        return {
            "coins": self.coin_balance,
            "inventory": [],
            "coinHistory": {"received": [], "sent": []},
        }

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.email}>"
