"""Cooldown stores: last trigger time per (collection, alert type).

``try_acquire`` is the only write path. It checks and records in one
atomic step, so two concurrent evaluations cannot both pass the gate.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# KEYS[1] = cooldown key, ARGV[1] = now (epoch ms), ARGV[2] = cooldown (ms).
# Returns 1 and records now if the cooldown has elapsed, 0 otherwise.
_TRY_ACQUIRE_LUA = """
local last = redis.call('GET', KEYS[1])
local now = tonumber(ARGV[1])
local cooldown = tonumber(ARGV[2])
if last and (now - tonumber(last)) < cooldown then
  return 0
end
if cooldown > 0 then
  redis.call('SET', KEYS[1], ARGV[1], 'PX', cooldown)
else
  redis.call('SET', KEYS[1], ARGV[1])
end
return 1
"""


class CooldownStore(Protocol):
    async def try_acquire(self, collection_id: str, alert_type: str, now: datetime) -> bool:
        """Record ``now`` and return True unless the pair is still cooling down."""
        ...

    async def last_triggered(self, collection_id: str, alert_type: str) -> datetime | None: ...

    async def clear(self) -> None: ...


class InMemoryCooldownStore:
    """Process-local cooldown map."""

    def __init__(self, cooldown: timedelta) -> None:
        self._cooldown = cooldown
        self._entries: dict[tuple[str, str], datetime] = {}
        self._lock = asyncio.Lock()

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    async def try_acquire(self, collection_id: str, alert_type: str, now: datetime) -> bool:
        key = (collection_id, alert_type)
        async with self._lock:
            last = self._entries.get(key)
            if last is not None and now - last < self._cooldown:
                return False
            self._entries[key] = now
            return True

    async def last_triggered(self, collection_id: str, alert_type: str) -> datetime | None:
        async with self._lock:
            return self._entries.get((collection_id, alert_type))

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


class RedisCooldownStore:
    """Cooldown map shared through Redis.

    Entries expire on their own once the cooldown has passed.
    """

    def __init__(
        self,
        redis: Redis,
        cooldown: timedelta,
        *,
        key_prefix: str = "collection_monitor:",
    ) -> None:
        self._redis = redis
        self._cooldown = cooldown
        self._prefix = f"{key_prefix}cooldown:"

    def _key(self, collection_id: str, alert_type: str) -> str:
        return f"{self._prefix}{collection_id}:{alert_type}"

    async def try_acquire(self, collection_id: str, alert_type: str, now: datetime) -> bool:
        now_ms = int(now.timestamp() * 1000)
        cooldown_ms = int(self._cooldown.total_seconds() * 1000)
        acquired = await self._redis.eval(
            _TRY_ACQUIRE_LUA,
            1,
            self._key(collection_id, alert_type),
            now_ms,
            cooldown_ms,
        )
        return int(acquired) == 1

    async def last_triggered(self, collection_id: str, alert_type: str) -> datetime | None:
        raw = await self._redis.get(self._key(collection_id, alert_type))
        if raw is None:
            return None
        value = raw.decode() if isinstance(raw, bytes) else str(raw)
        return datetime.fromtimestamp(int(value) / 1000.0, tz=UTC)

    async def clear(self) -> None:
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(cursor=cursor, match=f"{self._prefix}*", count=500)
            if keys:
                await self._redis.delete(*keys)
            if not cursor:
                break
        logger.info("Cleared Redis cooldown entries")
