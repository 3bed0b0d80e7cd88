"""
Shared test fixtures and configuration for pytest.
"""

import os
import pytest
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["STORE_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["STORE_RETRY_BASE_DELAY"] = "0"
os.environ["TIMELINE_TIMEZONE"] = "UTC"

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from batchat.main import app
from batchat.core.auth import create_access_token
from batchat.core.store import InMemoryDocumentStore
from batchat.core.uploads import BlobUploader
from batchat.db.sql_store import SqlDocumentStore


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Deterministic millisecond clock for store timestamps."""

    def __init__(self, start_ms: int = 1_709_640_000_000):  # 2024-03-05 12:00 UTC
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


def make_profile(uid: str, name: str, handle: str, **extra) -> dict:
    """Raw users/{uid} document."""
    return {
        "name": name,
        "handle": handle,
        "email": f"{handle}@example.com",
        "phone": "+15550100",
        "avatarUrl": f"https://i.pravatar.cc/150?u={uid}",
        "privacy": {"showPhoneNumber": "none"},
        **extra,
    }


# ============ Store Fixtures ============

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock) -> InMemoryDocumentStore:
    """Empty in-memory store on the fake clock."""
    return InMemoryDocumentStore(now_func=clock)


@pytest.fixture
def seeded_store(clock) -> InMemoryDocumentStore:
    """In-memory store with three registered users."""
    return InMemoryDocumentStore(
        initial={
            "users": {
                "alice": make_profile("alice", "Alice Liddell", "alice"),
                "bob": make_profile("bob", "Bob Builder", "bob_b"),
                "carol": make_profile("carol", "Carol Danvers", "carol"),
            },
            "handles": {
                "alice": {"ownerType": "user", "ownerId": "alice"},
                "bob_b": {"ownerType": "user", "ownerId": "bob"},
                "carol": {"ownerType": "user", "ownerId": "carol"},
            },
        },
        now_func=clock,
    )


@pytest.fixture
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    await engine.dispose()


@pytest.fixture
async def sql_store(async_engine, clock) -> AsyncGenerator[SqlDocumentStore, None]:
    """SQL-backed store on a fresh in-memory SQLite database."""
    store = SqlDocumentStore(async_engine, now_func=clock)
    await store.initialize()
    yield store
    await store.close()


# ============ Collaborator Fixtures ============

@pytest.fixture
def mock_uploader():
    """Blob uploader that always succeeds."""
    uploader = MagicMock(spec=BlobUploader)
    uploader.upload = AsyncMock(return_value="https://i.ibb.co/abc/photo.png")
    return uploader


# ============ API Fixtures ============

@pytest.fixture
async def test_client(seeded_store, mock_uploader) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client bound to the seeded store."""
    app.state.store = seeded_store
    app.state.uploader = mock_uploader

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.state.store = None
    app.state.uploader = None


def auth_headers_for(uid: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(uid, f'{uid}@example.com')}"}


@pytest.fixture
def auth_headers() -> dict:
    """Authorization headers for alice."""
    return auth_headers_for("alice")


@pytest.fixture
def bob_headers() -> dict:
    return auth_headers_for("bob")


@pytest.fixture
def carol_headers() -> dict:
    return auth_headers_for("carol")


@pytest.fixture
def headers_for():
    """Factory for Authorization headers of any uid."""
    return auth_headers_for
