"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import AsyncGenerator

import pytest

from taskdist.core import db_client
from taskdist.core.config import settings
from taskdist.core.redis_client import RedisClient
from taskdist.core.scheduler_tracker import JobTracker


logger = logging.getLogger(__name__)


@pytest.fixture
async def sqlite_db(tmp_path, monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[str, None]:
    """Fresh SQLite database with the full schema, torn down after the test."""
    db_path = str(tmp_path / "taskdist.db")
    monkeypatch.setattr(settings, "sqlite_db_path", db_path)

    await db_client.init_db()
    logger.debug("Initialized test database at %s", db_path)
    yield db_path
    await db_client.close_connection()


@pytest.fixture
def tracker() -> JobTracker:
    """Job tracker with in-memory storage only."""
    return JobTracker(redis=RedisClient(url=""))
