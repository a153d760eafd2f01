"""
Snapgram Backend — User Route Handlers
========================================

What:  User directory, profiles, per-user post lists and the follow graph.
How:   Reads go through the query cache; follow/unfollow act on behalf of
       the signed-in user.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from snapgram.dependencies import SessionContext, get_current_session
from snapgram.exceptions import PermissionDeniedError
from snapgram.query.queries import snapgram_queries
from snapgram.schemas.api import ErrorResponse, FollowResponse
from snapgram.schemas.documents import PostDTO, SaveDTO, UserDTO

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])

_NOT_FOUND = {404: {"description": "User not found", "model": ErrorResponse}}


@router.get("", response_model=List[UserDTO], summary="Newest users")
async def list_users(limit: int = Query(default=20, ge=1, le=100)) -> List[UserDTO]:
    return await snapgram_queries.get_users(limit)


@router.get("/{user_id}", response_model=UserDTO, responses=_NOT_FOUND)
async def get_user(user_id: str) -> UserDTO:
    return await snapgram_queries.get_user_by_id(user_id)


@router.get("/{user_id}/followers", response_model=List[UserDTO], responses=_NOT_FOUND)
async def get_followers(user_id: str) -> List[UserDTO]:
    return await snapgram_queries.get_user_followers(user_id)


@router.get("/{user_id}/following", response_model=List[UserDTO], responses=_NOT_FOUND)
async def get_following(user_id: str) -> List[UserDTO]:
    return await snapgram_queries.get_user_following(user_id)


@router.get("/{user_id}/posts", response_model=List[PostDTO])
async def get_user_posts(user_id: str) -> List[PostDTO]:
    return await snapgram_queries.get_user_posts(user_id)


@router.get("/{user_id}/liked", response_model=List[PostDTO])
async def get_liked_posts(user_id: str) -> List[PostDTO]:
    return await snapgram_queries.get_liked_posts(user_id)


@router.get(
    "/{user_id}/saved",
    response_model=List[SaveDTO],
    responses={403: {"description": "Saved posts are private", "model": ErrorResponse}},
)
async def get_saved_posts(user_id: str, ctx: SessionContext = Depends(get_current_session)) -> List[SaveDTO]:
    if user_id != ctx.user_id:
        raise PermissionDeniedError(message="Saved posts are only visible to their owner.")
    return await snapgram_queries.get_saved_posts(user_id)


@router.post("/{user_id}/follow", response_model=FollowResponse, responses=_NOT_FOUND)
async def follow(user_id: str, ctx: SessionContext = Depends(get_current_session)) -> FollowResponse:
    follower, followed = await snapgram_queries.follow(ctx.user_id, user_id)
    return FollowResponse(follower=follower, followed=followed)


@router.delete("/{user_id}/follow", response_model=FollowResponse, responses=_NOT_FOUND)
async def unfollow(user_id: str, ctx: SessionContext = Depends(get_current_session)) -> FollowResponse:
    follower, followed = await snapgram_queries.unfollow(ctx.user_id, user_id)
    return FollowResponse(follower=follower, followed=followed)
