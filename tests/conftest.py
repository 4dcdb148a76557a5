"""Shared pytest fixtures.

This module provides the in-memory SQLite record store, a manually driven
clock for the attachment store, and the scripted collaborator fakes used
across service and route tests.
"""

import pytest
import pytest_asyncio

from reela import config
from reela.database import create_test_engine
from reela.models import Base
from reela.services.artifact_repository import ArtifactRepository
from reela.services.attachment_store import AttachmentStore
from tests.support.factories import FakeGenerationService, FakeObjectStore, FakeRecordStore


class ManualClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clear_config_cache():
    """Reset cached required settings so monkeypatched env vars take effect."""
    config.get_database_url.cache_clear()
    config.get_google_api_key.cache_clear()
    yield
    config.get_database_url.cache_clear()
    config.get_google_api_key.cache_clear()


@pytest_asyncio.fixture
async def session_factory():
    """Create an in-memory SQLite database with all tables.

    Yields:
        async_sessionmaker bound to the test engine.
    """
    engine, factory = create_test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def repository(session_factory) -> ArtifactRepository:
    return ArtifactRepository(session_factory)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def attachment_store(clock) -> AttachmentStore:
    """10MB attachment store with a 60 second TTL on a manual clock."""
    return AttachmentStore(capacity_bytes=10 * 1024 * 1024, ttl_seconds=60, clock=clock)


@pytest.fixture
def generation_service() -> FakeGenerationService:
    return FakeGenerationService()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()
