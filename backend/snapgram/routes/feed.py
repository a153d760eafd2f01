"""
Snapgram Backend — Feed Route Handlers
========================================

What:  The geo-filtered discovery feed, in two flavours:
       - GET  /api/feed       stateless; the client carries the cursor
       - POST /api/feed/next  per-session infinite feed kept server-side
How:   The viewer position comes from the request when given, otherwise
       from the signed-in user's stored location. With no position at all
       the distance filter is ignored.

Distance parameter:
    "25"  → posts whose author is within 25 km
    "all" → no distance filter (also when omitted)

A page may contain fewer posts than the batch (even none) while
`has_more` is still true: follow `next_cursor` until `has_more` is false.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from snapgram.dependencies import SessionContext, get_current_session, get_optional_session
from snapgram.query.queries import snapgram_queries
from snapgram.schemas.api import ErrorResponse, FeedRequest, FeedSessionResponse
from snapgram.schemas.documents import Coordinate, FeedPage
from snapgram.services.geo import (
    FallbackGeolocationProvider,
    ProfileGeolocationProvider,
    RequestGeolocationProvider,
    parse_distance,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feed", tags=["Feed"])


async def _viewer_position(
    latitude: Optional[float],
    longitude: Optional[float],
    ctx: Optional[SessionContext],
) -> Optional[Coordinate]:
    provider = FallbackGeolocationProvider(
        RequestGeolocationProvider(latitude, longitude),
        ProfileGeolocationProvider(ctx.user if ctx else None),
    )
    return await provider.current_position()


@router.get(
    "",
    response_model=FeedPage,
    responses={
        400: {"description": "Invalid coordinate or distance", "model": ErrorResponse},
        404: {"description": "Cursor post no longer exists", "model": ErrorResponse},
        503: {"description": "Document store unavailable", "model": ErrorResponse},
    },
    summary="One page of the geo-filtered feed",
)
async def feed_page(
    latitude: Optional[float] = Query(default=None),
    longitude: Optional[float] = Query(default=None),
    distance: Optional[str] = Query(default=None, description="Radius in km, or 'all'"),
    cursor: Optional[str] = Query(default=None, description="next_cursor of the previous page"),
    ctx: Optional[SessionContext] = Depends(get_optional_session),
) -> FeedPage:
    distance_filter = parse_distance(distance)
    viewer = await _viewer_position(latitude, longitude, ctx)
    return await snapgram_queries.get_page(
        viewer.latitude if viewer else None,
        viewer.longitude if viewer else None,
        distance_filter,
        cursor,
    )


@router.post(
    "/next",
    response_model=FeedSessionResponse,
    responses={
        400: {"description": "Invalid coordinate or distance", "model": ErrorResponse},
        503: {"description": "Document store unavailable or timed out", "model": ErrorResponse},
    },
    summary="Advance the session's infinite feed",
    description=(
        "Fetches the next page of the caller's feed and returns every post loaded so "
        "far. Sending a different position or distance starts a new feed."
    ),
)
async def next_page(
    body: FeedRequest,
    ctx: SessionContext = Depends(get_current_session),
) -> FeedSessionResponse:
    distance_filter = parse_distance(body.distance)
    viewer = await _viewer_position(body.latitude, body.longitude, ctx)
    feed = await snapgram_queries.next_feed_page(
        ctx.session_id,
        viewer.latitude if viewer else None,
        viewer.longitude if viewer else None,
        distance_filter,
    )
    return FeedSessionResponse(
        state=feed.status.value,
        has_more=feed.has_more,
        page_count=len(feed.pages),
        posts=feed.posts,
        next_cursor=feed.next_cursor,
    )
