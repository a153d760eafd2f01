"""
Snapgram Backend — Account Service
====================================

What:  Sign-up, sign-in, sign-out, current-user lookup and location updates.
How:   Composes gateway calls. Sign-up is a two-step write (account, then
       user document); when the second step fails the account is deleted
       before PartialWriteError is raised.
Who:   Called by the query layer facade.

Sign-up Flow:
    ┌────────────────┐    ┌──────────────────┐    ┌───────────────────┐
    │ create_account │───▶│ initials avatar  │───▶│ create user doc   │
    └────────────────┘    └──────────────────┘    └─────────┬─────────┘
                                                  failure   │
                                                  ──────────▼──────────
                                                  delete_account, then
                                                  PartialWriteError
"""

import logging
from typing import Optional, Tuple
from urllib.parse import urlencode

from snapgram.config import settings
from snapgram.exceptions import (
    NotFoundError,
    PartialWriteError,
    SnapgramError,
    ValidationError,
)
from snapgram.schemas.documents import SessionDTO, UserDTO
from snapgram.services.backend_gateway import BackendGateway, backend_gateway
from snapgram.services.geo import validate_coordinate

logger = logging.getLogger(__name__)


def initials_avatar_url(name: str) -> str:
    return f"{settings.avatar_base_url}?{urlencode({'name': name})}"


class AccountService:
    def __init__(self, gateway: BackendGateway = backend_gateway):
        self.gateway = gateway

    async def create_user_account(
        self,
        name: str,
        username: str,
        email: str,
        password: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> UserDTO:
        """
        Create credentials plus the public user document.

        Raises:
            ValidationError: weak password or bad coordinate (no backend call)
                or an email already in use.
            PartialWriteError: the account was created but the user document
                was not; the account has already been removed.
        """
        if len(password) < settings.password_min_length:
            raise ValidationError(
                message=f"Password must be at least {settings.password_min_length} characters.",
                field="password",
            )
        if latitude is not None or longitude is not None:
            validate_coordinate(latitude, longitude)

        account = await self.gateway.create_account(email=email, password=password, name=name)

        try:
            user = await self.gateway.create_user_document(
                account_id=account.id,
                name=name,
                email=account.email,
                username=username,
                image_url=initials_avatar_url(name),
                latitude=latitude,
                longitude=longitude,
            )
        except SnapgramError as e:
            logger.error("User document for account %s failed: %s", account.id, e.message)
            cleaned_up = await self._discard_account(account.id)
            raise PartialWriteError(
                message="Your account could not be created. Please try again.",
                cleaned_up=cleaned_up,
                context={"account_id": account.id, "cause": type(e).__name__},
            ) from e

        logger.info("Account created: user=%s account=%s", user.id, account.id)
        return user

    async def _discard_account(self, account_id: str) -> bool:
        try:
            await self.gateway.delete_account(account_id)
        except NotFoundError:
            return True
        except SnapgramError as e:
            logger.error("Orphaned account %s could not be removed: %s", account_id, e.message)
            return False
        return True

    async def sign_in(
        self,
        email: str,
        password: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        replace_session_id: Optional[str] = None,
    ) -> Tuple[SessionDTO, UserDTO]:
        """
        Open a new session, closing `replace_session_id` first if given.

        When a position is supplied it becomes the user's stored location.
        """
        position = None
        if latitude is not None or longitude is not None:
            position = validate_coordinate(latitude, longitude)

        if replace_session_id:
            try:
                await self.gateway.delete_session(replace_session_id)
            except NotFoundError:
                pass

        session = await self.gateway.create_email_password_session(email, password)
        user = await self.gateway.get_user_by_account(session.account_id)

        if position is not None:
            user = await self.gateway.update_user(
                user.id, latitude=position.latitude, longitude=position.longitude
            )

        logger.info("Signed in: user=%s session=%s", user.id, session.id)
        return session, user

    async def sign_out(self, session_id: str) -> None:
        await self.gateway.delete_session(session_id)
        logger.info("Signed out: session=%s", session_id)

    async def resolve_session(self, token: str) -> SessionDTO:
        """Live session for a bearer token; AuthenticationError otherwise."""
        return await self.gateway.get_session(token)

    async def get_current_user(self, session: SessionDTO) -> UserDTO:
        return await self.gateway.get_user_by_account(session.account_id)

    async def update_user_location(self, user_id: str, latitude: float, longitude: float) -> UserDTO:
        position = validate_coordinate(latitude, longitude)
        return await self.gateway.update_user(
            user_id, latitude=position.latitude, longitude=position.longitude
        )


account_service = AccountService()
