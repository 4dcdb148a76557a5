"""Async database engine and session management.

This module provides the async SQLAlchemy 2.0 engine configuration,
session factory, and an in-memory engine helper for tests.

Usage:
    from reela.database import get_session_factory

    factory = get_session_factory()
    async with factory() as session:
        result = await session.execute(select(Video))
"""

import os
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from reela.config import get_database_url

# Check if DATABASE_URL is available (may not be during import in tests)
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
    # Development/Testing: Defer engine creation
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


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the configured session factory.

    Raises:
        RuntimeError: If database is not configured.
    """
    if async_session_factory is None:
        raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")
    return async_session_factory


def create_test_engine(
    database_url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine for testing.

    Args:
        database_url: Test database URL (defaults to in-memory SQLite).

    Returns:
        Tuple of (engine, async_session_factory) for testing.
    """
    test_engine = create_async_engine(
        database_url,
        echo=False,
        poolclass=StaticPool,  # one shared connection keeps :memory: alive across sessions
    )
    test_session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return test_engine, test_session_factory
