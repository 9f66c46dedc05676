"""Dirty-set stores: collections awaiting a metrics refresh.

Two backends share one small async interface:

- ``InMemoryDirtySet`` for a single process (default and tests)
- ``RedisDirtySet`` when several intake processes feed one refresher
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class DirtySet(Protocol):
    """Set of collection ids pending recomputation."""

    async def add(self, collection_id: str) -> None: ...

    async def drain(self) -> set[str]:
        """Atomically return and clear every pending id."""
        ...

    async def size(self) -> int: ...


class InMemoryDirtySet:
    """Process-local dirty set guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._pending: set[str] = set()
        self._lock = asyncio.Lock()

    async def add(self, collection_id: str) -> None:
        async with self._lock:
            self._pending.add(collection_id)

    async def drain(self) -> set[str]:
        async with self._lock:
            drained, self._pending = self._pending, set()
        if drained:
            logger.debug("Drained %d dirty collections", len(drained))
        return drained

    async def size(self) -> int:
        async with self._lock:
            return len(self._pending)


class RedisDirtySet:
    """Dirty set stored as a Redis SET.

    ``drain`` reads and deletes the key in one MULTI/EXEC transaction, so an
    id added concurrently lands either in this drain or the next one.
    """

    def __init__(self, redis: Redis, *, key_prefix: str = "collection_monitor:") -> None:
        self._redis = redis
        self._key = f"{key_prefix}dirty"

    async def add(self, collection_id: str) -> None:
        await self._redis.sadd(self._key, collection_id)

    async def drain(self) -> set[str]:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.smembers(self._key)
            pipe.delete(self._key)
            members, _ = await pipe.execute()
        drained = {m.decode() if isinstance(m, bytes) else str(m) for m in (members or ())}
        if drained:
            logger.debug("Drained %d dirty collections from Redis", len(drained))
        return drained

    async def size(self) -> int:
        return int(await self._redis.scard(self._key))
