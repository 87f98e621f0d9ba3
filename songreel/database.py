"""Async database engine and session management.

This module provides the async SQLAlchemy 2.0 engine configuration,
session factory, and FastAPI dependency injection for database sessions.

Usage:
    from songreel.database import async_session_factory
    from songreel.store import JobStore

    store = JobStore(async_session_factory)
    job = await store.load(job_id)
"""

import os
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from songreel.config import get_database_url

# DATABASE_URL may be absent at import time in tests
_database_url = os.getenv("DATABASE_URL")

if _database_url:
    engine: AsyncEngine | None = create_async_engine(
        get_database_url(),
        pool_size=10,
        max_overflow=5,
        pool_pre_ping=True,
        echo=os.getenv("DATABASE_ECHO", "").lower() == "true",
    )
else:
    engine = None


async_session_factory: async_sessionmaker[AsyncSession] | None = (
    async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # CRITICAL: prevents attribute expiration after commit
    )
    if engine
    else None
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database session injection.

    Yields an async database session with automatic commit on success
    and rollback on exception.

    Raises:
        RuntimeError: If database is not configured.
    """
    if async_session_factory is None:
        raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")

    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def create_test_engine(
    database_url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine for testing.

    In-memory SQLite is pinned to a single connection (StaticPool) so every
    session sees the same database.

    Returns:
        Tuple of (engine, async_session_factory) for testing.
    """
    test_engine = create_async_engine(
        database_url,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    test_session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return test_engine, test_session_factory
