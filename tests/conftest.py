"""Shared fixtures for QuickDefine tests.

Stores run against in-memory SQLite (one database per store instance)
and the remote tier is served by ``httpx.MockTransport`` handlers.
"""

from typing import AsyncGenerator

import pytest

from quickdefine.config import (
    CacheSettings,
    LookupSettings,
    PreloadSettings,
    RemoteSettings,
    Settings,
    StoreSettings,
    reset_settings,
)
from quickdefine.db.store import PersistentStore

from tests.helpers import MEMORY_DB_URL, TEST_BASE_URL, FakeClock


@pytest.fixture(autouse=True)
def _clean_settings():
    """Reset the cached settings before and after each test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> Settings:
    """Small, fast configuration for coordinator tests."""
    return Settings(
        cache=CacheSettings(max_size=50, ttl_seconds=60.0),
        store=StoreSettings(database_url=MEMORY_DB_URL),
        remote=RemoteSettings(
            base_url=TEST_BASE_URL,
            timeout_seconds=0.5,
            retry_attempts=2,
            retry_delay_seconds=0.0,
        ),
        preload=PreloadSettings(batch_size=10, target_count=100),
        lookup=LookupSettings(max_words=5),
    )


@pytest.fixture
async def store() -> AsyncGenerator[PersistentStore, None]:
    """Fresh in-memory persistent store."""
    s = PersistentStore(MEMORY_DB_URL)
    yield s
    await s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
