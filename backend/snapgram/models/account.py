"""
Snapgram Backend — Account & Session Documents
================================================

What:  ORM models for credentials (`accounts`) and sign-in sessions
       (`sessions`).
How:   Accounts hold the password hash; a session row is the server side of
       an opaque bearer token. Deleting the row is signing out.
Who:   Read and written only by the Backend Gateway.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from snapgram.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)

    # passlib pbkdf2_sha256 hash: $pbkdf2-sha256$<rounds>$<salt>$<checksum>
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, email='{self.email}')>"


class AuthSession(Base):
    """
    One signed-in session.

    The token is generated by `secrets.token_urlsafe` and is the only thing
    a client holds; it is looked up by unique index on every request.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_sessions_account_id", "account_id"),
    )

    def __repr__(self) -> str:
        return f"<AuthSession(id={self.id}, account_id={self.account_id})>"
