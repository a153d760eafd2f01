"""
Snapgram Backend — Typed Document DTOs
========================================

What:  Pydantic models for every document that crosses the Backend Gateway.
How:   The gateway maps ORM rows into these models (`from_attributes`);
       nothing above the gateway ever touches an untyped row or dict.
Who:   Returned by the gateway, consumed by services, the query layer and
       serialized directly by the routes.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Coordinate(BaseModel):
    """A (latitude, longitude) pair in signed decimal degrees."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float


class AccountDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str


class SessionDTO(BaseModel):
    """
    Server view of a signed-in session.

    `token` is the opaque bearer credential; it is only serialized in the
    sign-in response.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    token: str = Field(repr=False)
    created_at: datetime
    expires_at: datetime


class UserDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    name: str
    username: Optional[str] = None
    email: str
    image_url: Optional[str] = None
    bio: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    followers: List[str] = Field(default_factory=list)
    following: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def coordinate(self) -> Optional[Coordinate]:
        """The user's position, or None unless both components are set."""
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class PostDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    creator_id: str
    creator: Optional[UserDTO] = None
    caption: str = ""
    image_id: str
    image_url: str
    location: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list)
    created_at: datetime


class SaveDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    post_id: str
    post: Optional[PostDTO] = None
    created_at: Optional[datetime] = None


class StoredFile(BaseModel):
    """Handle returned by the file store after a successful upload."""

    id: str
    size: int
    mime_type: str


class PostBatch(BaseModel):
    """One raw, unfiltered batch of posts as returned by the store."""

    documents: List[PostDTO]
    requested: int

    @property
    def is_full(self) -> bool:
        return len(self.documents) >= self.requested

    @property
    def last_id(self) -> Optional[str]:
        return self.documents[-1].id if self.documents else None


class FeedPage(BaseModel):
    """
    One page of the geo-filtered feed.

    `posts` is the filtered subset; `next_cursor`, `has_more` and
    `batch_size` all describe the unfiltered batch the page was cut from.
    """

    posts: List[PostDTO]
    next_cursor: Optional[str] = None
    has_more: bool
    batch_size: int
