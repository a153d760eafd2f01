"""
Snapgram Backend — Backend Gateway
====================================

What:  Typed async functions over the hosted backend: accounts & sessions,
       the users/posts/saves document collections, and file storage.
How:   Each call opens its own session from the session factory, runs one
       transaction, and maps rows into DTOs before the session closes.
       Every driver or OS exception is translated into the application's
       error taxonomy here; nothing raw crosses this boundary.
Who:   Called by the feed resolver and the account/post/social services.

Resilience:
    - Circuit breaker in front of the document store (shared by all calls)
    - Idempotent reads wrapped in a tenacity retry loop (settings-driven,
      disabled by default); writes are never retried
    - NotFound / Validation / Authentication errors mean the backend
      answered, so they count as circuit-breaker successes

The gateway holds no state besides the breaker.
"""

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, TypeVar

from passlib.context import CryptContext
from sqlalchemy import and_, desc, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from snapgram.config import settings
from snapgram.database import async_session_factory
from snapgram.exceptions import (
    AuthenticationError,
    NotFoundError,
    SnapgramError,
    TransportError,
    ValidationError,
)
from snapgram.models.account import Account, AuthSession
from snapgram.models.post import Post, Save
from snapgram.models.user import User
from snapgram.schemas.documents import (
    AccountDTO,
    PostBatch,
    PostDTO,
    SaveDTO,
    SessionDTO,
    StoredFile,
    UserDTO,
)
from snapgram.services.resilience import CircuitBreaker, read_retry_policy
from snapgram.services.storage_service import StorageService, storage_service

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_UPDATABLE_FIELDS = {"name", "username", "bio", "image_url", "latitude", "longitude", "followers", "following"}
POST_UPDATABLE_FIELDS = {"caption", "image_id", "image_url", "location", "tags", "likes"}

# Upper bound on posts scanned when answering "posts liked by user"
LIKED_SCAN_LIMIT = 500


# ── Password hashing ──────────────────────────────────────────────────────

password_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    pbkdf2_sha256__default_rounds=settings.password_hash_iterations,
)


def hash_password(password: str) -> str:
    return password_context.hash(password)


def verify_password(password: str, encoded: str) -> bool:
    try:
        return password_context.verify(password, encoded)
    except ValueError:
        # Stored value is not a hash this context can identify
        return False


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class BackendGateway:
    """
    Leaf component: document, account and file operations.

    Every public method either returns DTOs or raises a SnapgramError
    subclass (TransportError for anything the backend itself failed on).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        storage: StorageService = storage_service,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_attempts: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.storage = storage
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        self.retry_attempts = settings.retry_max_attempts if retry_attempts is None else retry_attempts

    # ══════════════════════════════════════════════════════════════════════
    # Plumbing
    # ══════════════════════════════════════════════════════════════════════

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """
        One session, one transaction, committed on clean exit.

        Translates store failures into TransportError and feeds the
        circuit breaker.
        """
        self.circuit_breaker.can_execute()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SnapgramError:
            self.circuit_breaker.record_success()
            raise
        except (SQLAlchemyError, OSError, ConnectionError, TimeoutError) as e:
            self.circuit_breaker.record_failure()
            logger.error("Backend call %s failed: %s", operation, str(e))
            raise TransportError(
                message="The service is temporarily unavailable. Please try again.",
                context={"operation": operation, "error_type": type(e).__name__},
            ) from e
        else:
            self.circuit_breaker.record_success()

    async def _read(self, operation: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run an idempotent read, retrying TransportError per settings."""
        async for attempt in read_retry_policy(
            self.retry_attempts, settings.retry_min_wait, settings.retry_max_wait
        ):
            with attempt:
                async with self._transaction(operation) as session:
                    return await fn(session)
        raise TransportError(context={"operation": operation})  # pragma: no cover

    @staticmethod
    async def _get_or_404(session: AsyncSession, model: Any, doc_id: str, resource: str) -> Any:
        row = await session.get(model, doc_id)
        if row is None:
            raise NotFoundError(resource=resource, resource_id=doc_id)
        return row

    # ══════════════════════════════════════════════════════════════════════
    # Accounts & Sessions
    # ══════════════════════════════════════════════════════════════════════

    async def create_account(self, email: str, password: str, name: str) -> AccountDTO:
        email = email.strip().lower()
        async with self._transaction("create_account") as session:
            existing = await session.execute(select(Account.id).where(Account.email == email))
            if existing.scalar_one_or_none() is not None:
                raise ValidationError(
                    message="An account with this email already exists.",
                    field="email",
                )
            account = Account(email=email, name=name, password_hash=hash_password(password))
            session.add(account)
            try:
                await session.flush()
            except IntegrityError:
                raise ValidationError(
                    message="An account with this email already exists.",
                    field="email",
                )
            return AccountDTO.model_validate(account)

    async def delete_account(self, account_id: str) -> None:
        async with self._transaction("delete_account") as session:
            account = await self._get_or_404(session, Account, account_id, "account")
            await session.delete(account)

    async def create_email_password_session(self, email: str, password: str) -> SessionDTO:
        email = email.strip().lower()
        async with self._transaction("create_session") as session:
            result = await session.execute(select(Account).where(Account.email == email))
            account = result.scalar_one_or_none()
            if account is None or not verify_password(password, account.password_hash):
                raise AuthenticationError(message="Invalid email or password.")

            now = datetime.now(timezone.utc)
            auth_session = AuthSession(
                account_id=account.id,
                token=secrets.token_urlsafe(32),
                created_at=now,
                expires_at=now + timedelta(hours=settings.session_ttl_hours),
            )
            session.add(auth_session)
            await session.flush()
            return SessionDTO.model_validate(auth_session)

    async def get_session(self, token: str) -> SessionDTO:
        async def _query(session: AsyncSession) -> SessionDTO:
            result = await session.execute(select(AuthSession).where(AuthSession.token == token))
            auth_session = result.scalar_one_or_none()
            if auth_session is None:
                raise AuthenticationError()
            if _as_utc(auth_session.expires_at) <= datetime.now(timezone.utc):
                raise AuthenticationError(message="Your session has expired. Please sign in again.")
            return SessionDTO.model_validate(auth_session)

        return await self._read("get_session", _query)

    async def delete_session(self, session_id: str) -> None:
        async with self._transaction("delete_session") as session:
            auth_session = await self._get_or_404(session, AuthSession, session_id, "session")
            await session.delete(auth_session)

    # ══════════════════════════════════════════════════════════════════════
    # Users collection
    # ══════════════════════════════════════════════════════════════════════

    async def create_user_document(
        self,
        account_id: str,
        name: str,
        email: str,
        username: Optional[str] = None,
        image_url: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> UserDTO:
        async with self._transaction("create_user_document") as session:
            user = User(
                account_id=account_id,
                name=name,
                email=email,
                username=username,
                image_url=image_url,
                latitude=latitude,
                longitude=longitude,
                followers=[],
                following=[],
            )
            session.add(user)
            await session.flush()
            return UserDTO.model_validate(user)

    async def get_user(self, user_id: str) -> UserDTO:
        async def _query(session: AsyncSession) -> UserDTO:
            return UserDTO.model_validate(await self._get_or_404(session, User, user_id, "user"))

        return await self._read("get_user", _query)

    async def get_user_by_account(self, account_id: str) -> UserDTO:
        async def _query(session: AsyncSession) -> UserDTO:
            result = await session.execute(select(User).where(User.account_id == account_id))
            user = result.scalar_one_or_none()
            if user is None:
                raise NotFoundError(resource="user", context={"account_id": account_id})
            return UserDTO.model_validate(user)

        return await self._read("get_user_by_account", _query)

    async def list_users(self, limit: int = 20) -> List[UserDTO]:
        async def _query(session: AsyncSession) -> List[UserDTO]:
            result = await session.execute(
                select(User).order_by(desc(User.created_at)).limit(limit)
            )
            return [UserDTO.model_validate(u) for u in result.scalars().all()]

        return await self._read("list_users", _query)

    async def list_users_by_ids(self, user_ids: List[str]) -> List[UserDTO]:
        if not user_ids:
            return []

        async def _query(session: AsyncSession) -> List[UserDTO]:
            result = await session.execute(select(User).where(User.id.in_(user_ids)))
            by_id = {u.id: UserDTO.model_validate(u) for u in result.scalars().all()}
            # Keep the order of the id list; ids with no document are skipped
            return [by_id[uid] for uid in user_ids if uid in by_id]

        return await self._read("list_users_by_ids", _query)

    async def update_user(self, user_id: str, **fields: Any) -> UserDTO:
        unknown = set(fields) - USER_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(message=f"Unknown user fields: {sorted(unknown)}")
        async with self._transaction("update_user") as session:
            user = await self._get_or_404(session, User, user_id, "user")
            for key, value in fields.items():
                setattr(user, key, list(value) if isinstance(value, (list, tuple)) else value)
            await session.flush()
            return UserDTO.model_validate(user)

    # ══════════════════════════════════════════════════════════════════════
    # Posts collection
    # ══════════════════════════════════════════════════════════════════════

    async def create_post_document(
        self,
        creator_id: str,
        caption: str,
        image_id: str,
        image_url: str,
        location: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> PostDTO:
        async with self._transaction("create_post_document") as session:
            await self._get_or_404(session, User, creator_id, "user")
            post = Post(
                creator_id=creator_id,
                caption=caption,
                image_id=image_id,
                image_url=image_url,
                location=location,
                tags=list(tags or []),
                likes=[],
            )
            session.add(post)
            await session.flush()
            await session.refresh(post, attribute_names=["creator"])
            return PostDTO.model_validate(post)

    async def get_post(self, post_id: str) -> PostDTO:
        async def _query(session: AsyncSession) -> PostDTO:
            return PostDTO.model_validate(await self._get_or_404(session, Post, post_id, "post"))

        return await self._read("get_post", _query)

    async def update_post_document(self, post_id: str, **fields: Any) -> PostDTO:
        unknown = set(fields) - POST_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(message=f"Unknown post fields: {sorted(unknown)}")
        async with self._transaction("update_post_document") as session:
            post = await self._get_or_404(session, Post, post_id, "post")
            for key, value in fields.items():
                setattr(post, key, list(value) if isinstance(value, (list, tuple)) else value)
            await session.flush()
            return PostDTO.model_validate(post)

    async def delete_post_document(self, post_id: str) -> None:
        async with self._transaction("delete_post_document") as session:
            post = await self._get_or_404(session, Post, post_id, "post")
            saves = await session.execute(select(Save).where(Save.post_id == post_id))
            for save in saves.scalars().all():
                await session.delete(save)
            await session.delete(post)

    async def list_posts(self, limit: int, cursor_after: Optional[str] = None) -> PostBatch:
        """
        Newest-first batch of posts, strictly after `cursor_after`.

        Order is (created_at DESC, id DESC) so that a cursor identifies one
        position even when timestamps tie.
        """

        async def _query(session: AsyncSession) -> PostBatch:
            query = select(Post)
            if cursor_after:
                anchor = await session.get(Post, cursor_after)
                if anchor is None:
                    raise NotFoundError(resource="cursor", resource_id=cursor_after)
                query = query.where(
                    or_(
                        Post.created_at < anchor.created_at,
                        and_(Post.created_at == anchor.created_at, Post.id < anchor.id),
                    )
                )
            query = query.order_by(desc(Post.created_at), desc(Post.id)).limit(limit)
            result = await session.execute(query)
            documents = [PostDTO.model_validate(p) for p in result.scalars().unique().all()]
            return PostBatch(documents=documents, requested=limit)

        return await self._read("list_posts", _query)

    async def search_posts(self, term: str, limit: int = 20) -> List[PostDTO]:
        async def _query(session: AsyncSession) -> List[PostDTO]:
            pattern = f"%{term.strip().lower()}%"
            result = await session.execute(
                select(Post)
                .where(func.lower(Post.caption).like(pattern))
                .order_by(desc(Post.created_at), desc(Post.id))
                .limit(limit)
            )
            return [PostDTO.model_validate(p) for p in result.scalars().unique().all()]

        return await self._read("search_posts", _query)

    async def list_posts_by_creator(self, creator_id: str) -> List[PostDTO]:
        async def _query(session: AsyncSession) -> List[PostDTO]:
            result = await session.execute(
                select(Post)
                .where(Post.creator_id == creator_id)
                .order_by(desc(Post.created_at), desc(Post.id))
            )
            return [PostDTO.model_validate(p) for p in result.scalars().unique().all()]

        return await self._read("list_posts_by_creator", _query)

    async def list_posts_liked_by(self, user_id: str) -> List[PostDTO]:
        # likes is a JSON array; membership is checked here rather than in
        # SQL so the query stays portable across SQLite and PostgreSQL.
        async def _query(session: AsyncSession) -> List[PostDTO]:
            result = await session.execute(
                select(Post).order_by(desc(Post.created_at), desc(Post.id)).limit(LIKED_SCAN_LIMIT)
            )
            return [
                PostDTO.model_validate(p)
                for p in result.scalars().unique().all()
                if user_id in (p.likes or [])
            ]

        return await self._read("list_posts_liked_by", _query)

    # ══════════════════════════════════════════════════════════════════════
    # Saves collection
    # ══════════════════════════════════════════════════════════════════════

    async def create_save(self, user_id: str, post_id: str) -> SaveDTO:
        async with self._transaction("create_save") as session:
            await self._get_or_404(session, User, user_id, "user")
            await self._get_or_404(session, Post, post_id, "post")
            existing = await session.execute(
                select(Save).where(Save.user_id == user_id, Save.post_id == post_id)
            )
            if existing.unique().scalar_one_or_none() is not None:
                raise ValidationError(message="This post is already saved.", field="post_id")
            save = Save(user_id=user_id, post_id=post_id)
            session.add(save)
            await session.flush()
            await session.refresh(save, attribute_names=["post"])
            return SaveDTO.model_validate(save)

    async def delete_save(self, save_id: str) -> None:
        async with self._transaction("delete_save") as session:
            save = await self._get_or_404(session, Save, save_id, "save")
            await session.delete(save)

    async def list_saves(self, user_id: str) -> List[SaveDTO]:
        async def _query(session: AsyncSession) -> List[SaveDTO]:
            result = await session.execute(
                select(Save).where(Save.user_id == user_id).order_by(desc(Save.created_at))
            )
            return [SaveDTO.model_validate(s) for s in result.scalars().unique().all()]

        return await self._read("list_saves", _query)

    # ══════════════════════════════════════════════════════════════════════
    # Files
    # ══════════════════════════════════════════════════════════════════════

    async def upload_file(
        self, filename: str, content: bytes, content_length: Optional[int] = None
    ) -> StoredFile:
        return await self.storage.upload(filename, content, content_length)

    def get_file_preview(self, file_id: str) -> str:
        return self.storage.preview_url(file_id)

    async def delete_file(self, file_id: str) -> None:
        await self.storage.delete(file_id)


backend_gateway = BackendGateway()
