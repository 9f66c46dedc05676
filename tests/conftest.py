"""Pytest configuration and fixtures."""

from datetime import UTC, datetime

import pytest

from collection_monitor.storage.database import DatabaseManager


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation time used across tests."""
    return datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@pytest.fixture
def collection_id() -> str:
    """Sample collection ID for testing."""
    return "col-azuki"


@pytest.fixture
async def db(tmp_path):
    """SQLite-backed database manager with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()
