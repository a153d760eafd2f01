"""
Snapgram Backend — Request/Response Schemas
=============================================

What:  Pydantic models defining the HTTP contract of the View Layer.
How:   FastAPI validates request bodies against these models and serializes
       responses through them. Document payloads reuse the DTOs in
       `snapgram.schemas.documents`.
"""

from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from snapgram.schemas.documents import PostDTO, UserDTO


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class SignUpRequest(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    username: str = Field(min_length=2, max_length=60)
    email: EmailStr
    password: str = Field(min_length=1, max_length=256)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=256)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class LikeRequest(BaseModel):
    """The full, replacement list of user ids that like the post."""

    likes: List[str] = Field(default_factory=list)



class FeedRequest(BaseModel):
    """Body of POST /api/feed/next (per-session infinite feed)."""

    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    distance: Optional[str] = Field(
        default=None,
        description="Radius in km, or 'all' for no distance filter",
    )


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class SignInResponse(BaseModel):
    token: str = Field(description="Bearer token for the Authorization header")
    session_id: str
    user: UserDTO


class FollowResponse(BaseModel):
    follower: UserDTO
    followed: UserDTO


class StatusResponse(BaseModel):
    status: str = "ok"


class FeedSessionResponse(BaseModel):
    """Snapshot of the caller's infinite feed after a page request."""

    state: str
    has_more: bool
    page_count: int
    posts: List[PostDTO] = Field(default_factory=list)
    next_cursor: Optional[str] = None


class ErrorResponse(BaseModel):
    """
    Standardized error envelope for all API errors.

    `message` is written to be shown verbatim as a notification.
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    database: str = Field(description="Document store: connected, disconnected")
    circuit_breaker: str = Field(description="Gateway circuit state: closed, open, half_open")
    cached_queries: int
    uptime_seconds: float

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in {"healthy", "degraded", "unhealthy"}:
            raise ValueError(f"Invalid status '{v}'")
        return v
