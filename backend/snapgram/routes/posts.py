"""
Snapgram Backend — Post Route Handlers
========================================

What:  Post CRUD, likes, saves, recent posts and caption search.
How:   Creation and update take multipart form data (the image travels with
       the caption); everything else is JSON.

Ownership:
    Only a post's creator may update or delete it (403 otherwise).
    Likes are written as the full replacement list sent by the client.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from snapgram.dependencies import SessionContext, get_current_session
from snapgram.exceptions import PermissionDeniedError
from snapgram.query.queries import snapgram_queries
from snapgram.schemas.api import ErrorResponse, LikeRequest, StatusResponse
from snapgram.schemas.documents import PostDTO, SaveDTO
from snapgram.services.post_service import Upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Posts"])


async def _read_upload(file: UploadFile) -> Upload:
    try:
        content = await file.read()
    finally:
        await file.close()
    return Upload(filename=file.filename or "upload.jpg", content=content, content_length=file.size)


async def _owned_post(post_id: str, ctx: SessionContext) -> PostDTO:
    post = await snapgram_queries.get_post_by_id(post_id)
    if post.creator_id != ctx.user_id:
        raise PermissionDeniedError(message="You can only change your own posts.")
    return post


@router.get("/posts/recent", response_model=List[PostDTO], summary="The 20 newest posts")
async def recent_posts() -> List[PostDTO]:
    return await snapgram_queries.get_recent_posts()


@router.get("/posts/search", response_model=List[PostDTO], summary="Search posts by caption")
async def search_posts(q: str = Query(..., min_length=1, max_length=100)) -> List[PostDTO]:
    return await snapgram_queries.search_posts(q)


@router.post(
    "/posts",
    status_code=201,
    response_model=PostDTO,
    responses={
        400: {"description": "Invalid caption or image", "model": ErrorResponse},
        500: {"description": "Post not created; uploaded image removed", "model": ErrorResponse},
        503: {"description": "Storage or document store unavailable", "model": ErrorResponse},
    },
    summary="Create a post",
)
async def create_post(
    caption: str = Form(..., max_length=2200),
    file: UploadFile = File(..., description="Post image (PNG, JPG, GIF or WEBP)"),
    location: Optional[str] = Form(default=None, max_length=255),
    tags: Optional[str] = Form(default=None, description="Comma-separated tags"),
    ctx: SessionContext = Depends(get_current_session),
) -> PostDTO:
    upload = await _read_upload(file)
    logger.info("Create post: user=%s file=%s size=%d", ctx.user_id, upload.filename, len(upload.content))
    return await snapgram_queries.create_post(
        creator_id=ctx.user_id,
        caption=caption,
        upload=upload,
        location=location,
        tags=tags,
    )


@router.get(
    "/posts/{post_id}",
    response_model=PostDTO,
    responses={404: {"description": "Post not found", "model": ErrorResponse}},
)
async def get_post(post_id: str) -> PostDTO:
    return await snapgram_queries.get_post_by_id(post_id)


@router.patch(
    "/posts/{post_id}",
    response_model=PostDTO,
    responses={
        403: {"description": "Not the post's creator", "model": ErrorResponse},
        404: {"description": "Post not found", "model": ErrorResponse},
    },
    summary="Update a post, optionally replacing its image",
)
async def update_post(
    post_id: str,
    caption: Optional[str] = Form(default=None, max_length=2200),
    location: Optional[str] = Form(default=None, max_length=255),
    tags: Optional[str] = Form(default=None),
    file: Optional[UploadFile] = File(default=None),
    ctx: SessionContext = Depends(get_current_session),
) -> PostDTO:
    await _owned_post(post_id, ctx)
    upload = await _read_upload(file) if file is not None else None
    return await snapgram_queries.update_post(
        post_id, caption=caption, location=location, tags=tags, upload=upload
    )


@router.delete("/posts/{post_id}", response_model=StatusResponse)
async def delete_post(post_id: str, ctx: SessionContext = Depends(get_current_session)) -> StatusResponse:
    await _owned_post(post_id, ctx)
    await snapgram_queries.delete_post(post_id)
    return StatusResponse()


@router.put("/posts/{post_id}/likes", response_model=PostDTO, summary="Replace the post's likes")
async def like_post(
    post_id: str,
    body: LikeRequest,
    ctx: SessionContext = Depends(get_current_session),
) -> PostDTO:
    return await snapgram_queries.like_post(post_id, body.likes)


@router.post("/posts/{post_id}/save", status_code=201, response_model=SaveDTO)
async def save_post(post_id: str, ctx: SessionContext = Depends(get_current_session)) -> SaveDTO:
    return await snapgram_queries.save_post(post_id, ctx.user_id)


@router.delete("/saves/{save_id}", response_model=StatusResponse)
async def delete_saved_post(save_id: str, ctx: SessionContext = Depends(get_current_session)) -> StatusResponse:
    await snapgram_queries.delete_saved_post(save_id)
    return StatusResponse()
