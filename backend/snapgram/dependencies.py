"""
Snapgram Backend — Request Dependencies
=========================================

What:  FastAPI dependencies that turn an `Authorization: Bearer <token>`
       header into an explicit SessionContext.
How:   The token is looked up on every request (sessions can be revoked by
       sign-out or expire); the user document is served through the query
       cache under (GET_CURRENT_USER, session_id).

A SessionContext exists from sign-in to sign-out. Handlers receive it as a
parameter; nothing reads the current user from global state.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from snapgram.exceptions import AuthenticationError
from snapgram.query.queries import snapgram_queries
from snapgram.schemas.documents import SessionDTO, UserDTO

bearer_scheme = HTTPBearer(auto_error=False, description="Session token from /api/auth/sign-in")


@dataclass(frozen=True)
class SessionContext:
    session: SessionDTO
    user: UserDTO

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def user_id(self) -> str:
        return self.user.id


async def get_optional_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[SessionContext]:
    if credentials is None or not credentials.credentials:
        return None
    session = await snapgram_queries.accounts.resolve_session(credentials.credentials)
    user = await snapgram_queries.get_current_user(session)
    return SessionContext(session=session, user=user)


async def get_current_session(
    context: Optional[SessionContext] = Depends(get_optional_session),
) -> SessionContext:
    if context is None:
        raise AuthenticationError(message="Please sign in to continue.")
    return context
