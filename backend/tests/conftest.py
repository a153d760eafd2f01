"""
Snapgram Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the whole suite.
How:   Environment variables are set BEFORE any snapgram import so the
       settings singleton, the engine and the storage service all point
       at throwaway locations (SQLite via aiosqlite, a temp directory).

Fixture Hierarchy:
    Plain helpers (no I/O):
    ├── make_user / make_post: DTO factories for resolver and cache tests
    ├── sample_image_bytes: smallest valid JPEG
    └── temp_storage: per-test storage directory

    Store-backed (SQLite tables created and dropped per test):
    ├── store: creates / drops every collection table
    ├── gateway: BackendGateway over the test store and temp storage
    └── test_client: HTTPX AsyncClient against the FastAPI app
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

_TEST_DIR = tempfile.mkdtemp(prefix="snapgram_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["STORAGE_ROOT"] = os.path.join(_TEST_DIR, "storage")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"

from snapgram.database import async_session_factory, drop_models, init_models  # noqa: E402
from snapgram.schemas.documents import PostDTO, UserDTO  # noqa: E402
from snapgram.services.backend_gateway import BackendGateway  # noqa: E402
from snapgram.services.resilience import CircuitBreaker  # noqa: E402
from snapgram.services.storage_service import StorageService  # noqa: E402

BASE_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


# ══════════════════════════════════════════════════════════════════════════
# DTO Factories
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_user():
    def _make(
        user_id: str = "u1",
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        **extra,
    ) -> UserDTO:
        return UserDTO(
            id=user_id,
            account_id=f"acct-{user_id}",
            name=f"User {user_id}",
            username=user_id,
            email=f"{user_id}@example.com",
            latitude=latitude,
            longitude=longitude,
            **extra,
        )

    return _make


@pytest.fixture
def make_post(make_user):
    """
    Build a PostDTO whose author sits at (latitude, longitude).

    Posts built with increasing `index` are older, matching feed order.
    """

    def _make(
        post_id: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        index: int = 0,
    ) -> PostDTO:
        author = make_user(f"author-{post_id}", latitude, longitude)
        return PostDTO(
            id=post_id,
            creator_id=author.id,
            creator=author,
            caption=f"caption {post_id}",
            image_id=f"{post_id}.jpg",
            image_url=f"http://test/api/files/{post_id}.jpg/preview",
            created_at=BASE_TIME - timedelta(minutes=index),
        )

    return _make


# ══════════════════════════════════════════════════════════════════════════
# Files
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def sample_image_bytes():
    """Minimal JPEG: Start of Image + JFIF header + End of Image."""
    return (
        b'\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00'
        b'\xff\xd9'
    )


# ══════════════════════════════════════════════════════════════════════════
# Store-backed Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def store():
    """Fresh collection tables for one test."""
    await init_models()
    yield
    await drop_models()


@pytest_asyncio.fixture
async def gateway(store, temp_storage):
    return BackendGateway(
        session_factory=async_session_factory,
        storage=StorageService(storage_root=temp_storage, public_base_url="http://test"),
        circuit_breaker=CircuitBreaker(failure_threshold=5, recovery_timeout=30),
        retry_attempts=1,
    )


@pytest_asyncio.fixture
async def test_client(store):
    """
    HTTPX AsyncClient routed straight into the app (no server).

    ASGITransport does not run the lifespan; the `store` fixture creates
    the tables instead. Cache and circuit state are reset around each test.
    """
    from snapgram.main import app
    from snapgram.query.queries import query_client
    from snapgram.services.backend_gateway import backend_gateway

    query_client.clear()
    backend_gateway.circuit_breaker.reset()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    query_client.clear()
