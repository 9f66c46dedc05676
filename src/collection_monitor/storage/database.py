"""Async database access for the event store.

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) for local runs and
tests. Every repository call goes through :meth:`DatabaseManager.get_async_session`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from collection_monitor.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def normalize_async_database_url(database_url: str) -> str:
    if database_url.startswith("postgresql://"):
        logger.warning(
            "Database URL uses sync dialect 'postgresql://'; using async driver 'postgresql+asyncpg://'."
        )
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def is_sqlite_url(database_url: str) -> bool:
    """Return True for SQLite URLs (which do not accept pool sizing options)."""
    return database_url.startswith("sqlite")


def create_async_db_engine(database_url: str, *, pool_size: int = 5, echo: bool = False) -> AsyncEngine:
    """Build the engine for a monitor database URL.

    Pool sizing only applies to server databases; SQLite gets the default pool.
    """
    kwargs: dict[str, Any] = {"echo": echo}
    if not is_sqlite_url(database_url):
        kwargs["pool_size"] = pool_size
    return create_async_engine(normalize_async_database_url(database_url), **kwargs)


class DatabaseManager:
    """Owns the engine and hands out transactional sessions."""

    def __init__(self, database_url: str, *, pool_size: int = 5, echo: bool = False) -> None:
        self.database_url = database_url
        self._pool_size = pool_size
        self._echo = echo

        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """The async engine, created on first use."""
        if self._engine is None:
            self._engine = create_async_db_engine(
                self.database_url, pool_size=self._pool_size, echo=self._echo
            )
        return self._engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on a clean exit and rolls back on error."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(bind=self.engine, expire_on_commit=False)

        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init_schema_async(self) -> None:
        """Create the collections, events, snapshots, metrics and alerts tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Monitor schema created")

    async def dispose_async(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
        logger.info("Database connections closed")
