"""
Snapgram Backend — User Document
==================================

What:  ORM model for the `users` collection (public profile of an account).

Document Shape:
    - followers / following are JSON arrays of user ids stored on the
      document itself, the way the hosted backend kept them. Follow and
      unfollow are therefore read-modify-write on two documents.
    - latitude / longitude are the last known position, unset until the
      user shares a location. Nothing validates them on write.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from snapgram.database import Base
from snapgram.models.account import _new_id, _utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    followers: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    following: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_users_created_at", created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"
