"""
Snapgram Backend — Post & Save Documents
==========================================

What:  ORM models for the `posts` and `saves` collections.

Query Patterns:
    - Feed / recent posts: ORDER BY created_at DESC, id DESC LIMIT 20
      → idx_posts_created_at; id breaks ties so a cursor is unambiguous
    - Posts by creator: WHERE creator_id = :id → idx_posts_creator_id
    - Saves by user: WHERE user_id = :id → idx_saves_user_id
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from snapgram.database import Base
from snapgram.models.account import _new_id, _utcnow
from snapgram.models.user import User


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    creator_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    caption: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # image_id is the storage file id; image_url its preview URL
    image_id: Mapped[str] = mapped_column(String(128), nullable=False)
    image_url: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Free-text place name typed by the author (not a coordinate)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    likes: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    # Author is always loaded with the post: the feed filter needs the
    # author's coordinates.
    creator: Mapped[User] = relationship(User, lazy="joined")

    __table_args__ = (
        Index("idx_posts_created_at", created_at.desc()),
        Index("idx_posts_creator_id", "creator_id"),
    )

    def __repr__(self) -> str:
        return f"<Post(id={self.id}, creator_id={self.creator_id})>"


class Save(Base):
    __tablename__ = "saves"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    post: Mapped[Post] = relationship(Post, lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_id", "post_id", name="uq_saves_user_post"),
        Index("idx_saves_user_id", "user_id"),
    )
