"""
Database connection and session management.
Uses SQLAlchemy async; SQLite (aiosqlite) locally, PostgreSQL (asyncpg) in deployment.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


# Convert sync URL to async URL if needed
def get_async_url(url: str) -> str:
    """Convert a database URL to its async driver form."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+asyncpg://", 1)
    elif url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``url``."""
    return create_async_engine(
        get_async_url(url),
        echo=echo,
        future=True,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables."""
    # Models must be imported so they register on Base.metadata
    from batchat.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
