"""
Snapgram Backend — Auth Route Handlers
========================================

What:  Sign-up, sign-in, sign-out, the current user and their location.
How:   Thin handlers over SnapgramQueries. Sign-up signs the new user in
       straight away and returns the same payload as sign-in.

Session token flow:
    POST /api/auth/sign-in  → {"token": "...", "session_id": "...", "user": {...}}
    later requests          → Authorization: Bearer <token>
    POST /api/auth/sign-out → session row deleted, token stops working
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from snapgram.dependencies import SessionContext, get_current_session, get_optional_session
from snapgram.query.queries import snapgram_queries
from snapgram.schemas.api import (
    ErrorResponse,
    LocationUpdateRequest,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    StatusResponse,
)
from snapgram.schemas.documents import UserDTO

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/sign-up",
    status_code=201,
    response_model=SignInResponse,
    responses={
        400: {"description": "Invalid input or email already registered", "model": ErrorResponse},
        500: {"description": "Account creation rolled back", "model": ErrorResponse},
    },
    summary="Create an account and sign in",
)
async def sign_up(body: SignUpRequest) -> SignInResponse:
    await snapgram_queries.create_user_account(
        name=body.name,
        username=body.username,
        email=body.email,
        password=body.password,
        latitude=body.latitude,
        longitude=body.longitude,
    )
    session, user = await snapgram_queries.sign_in(body.email, body.password)
    return SignInResponse(token=session.token, session_id=session.id, user=user)


@router.post(
    "/sign-in",
    response_model=SignInResponse,
    responses={401: {"description": "Invalid credentials", "model": ErrorResponse}},
    summary="Open a session",
    description=(
        "Exchanges email and password for a bearer token. When the request already "
        "carries a valid token, that session is closed first. A supplied position "
        "becomes the user's stored location."
    ),
)
async def sign_in(
    body: SignInRequest,
    current: Optional[SessionContext] = Depends(get_optional_session),
) -> SignInResponse:
    session, user = await snapgram_queries.sign_in(
        email=body.email,
        password=body.password,
        latitude=body.latitude,
        longitude=body.longitude,
        replace_session_id=current.session_id if current else None,
    )
    return SignInResponse(token=session.token, session_id=session.id, user=user)


@router.post("/sign-out", response_model=StatusResponse, summary="Close the current session")
async def sign_out(ctx: SessionContext = Depends(get_current_session)) -> StatusResponse:
    await snapgram_queries.sign_out(ctx.session)
    return StatusResponse()


@router.get("/me", response_model=UserDTO, summary="The signed-in user")
async def me(ctx: SessionContext = Depends(get_current_session)) -> UserDTO:
    return ctx.user


@router.put("/me/location", response_model=UserDTO, summary="Store the user's current position")
async def update_location(
    body: LocationUpdateRequest,
    ctx: SessionContext = Depends(get_current_session),
) -> UserDTO:
    return await snapgram_queries.update_user_location(ctx.user_id, body.latitude, body.longitude)
