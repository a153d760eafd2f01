"""
Snapgram Backend — Document Store Session Management
======================================================

What:  Async SQLAlchemy engine, session factory, declarative base and
       schema bootstrap for the document store behind the Backend Gateway.
How:   Creates an async engine (pooled for PostgreSQL, unpooled for SQLite),
       provides a session factory the gateway opens one session per call from.
Who:   Used by the gateway, the health check and the app lifespan.
"""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from snapgram.config import settings


def _engine_options(database_url: str) -> Dict[str, Any]:
    """
    Pool configuration for the configured driver.

    SQLite (tests, local runs) gets NullPool: a pooled aiosqlite connection
    is bound to the event loop that opened it.
    """
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if database_url.startswith("sqlite"):
        options["poolclass"] = NullPool
    else:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


def build_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, **_engine_options(database_url))


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: rows are mapped to DTOs after commit
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url)
async_session_factory = build_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all document models."""
    pass


async def init_models(bind: AsyncEngine = engine) -> None:
    """
    Create every collection table that does not exist yet.

    Called from the app lifespan and by the test fixtures.
    """
    # Importing the models registers them on Base.metadata
    from snapgram.models import account, post, user  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_models(bind: AsyncEngine = engine) -> None:
    from snapgram.models import account, post, user  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def dispose_engine() -> None:
    """Closes every pooled connection. Called on application shutdown."""
    await engine.dispose()
