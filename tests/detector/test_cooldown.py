"""Tests for cooldown stores."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from collection_monitor.detector.cooldown import InMemoryCooldownStore, RedisCooldownStore

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class TestInMemoryCooldownStore:
    """Tests for InMemoryCooldownStore."""

    async def test_suppresses_within_cooldown(self) -> None:
        store = InMemoryCooldownStore(timedelta(minutes=60))

        assert await store.try_acquire("col-1", "price_drop", T0) is True
        assert await store.try_acquire("col-1", "price_drop", T0 + timedelta(minutes=30)) is False
        assert await store.try_acquire("col-1", "price_drop", T0 + timedelta(minutes=61)) is True

    async def test_suppressed_attempt_does_not_extend(self) -> None:
        store = InMemoryCooldownStore(timedelta(minutes=60))
        await store.try_acquire("col-1", "price_drop", T0)
        await store.try_acquire("col-1", "price_drop", T0 + timedelta(minutes=59))

        assert await store.last_triggered("col-1", "price_drop") == T0
        assert await store.try_acquire("col-1", "price_drop", T0 + timedelta(minutes=60)) is True

    async def test_keys_are_independent(self) -> None:
        store = InMemoryCooldownStore(timedelta(minutes=60))
        assert await store.try_acquire("col-1", "price_drop", T0) is True
        assert await store.try_acquire("col-1", "volume_spike", T0) is True
        assert await store.try_acquire("col-2", "price_drop", T0) is True

    async def test_zero_cooldown(self) -> None:
        store = InMemoryCooldownStore(timedelta(0))
        assert await store.try_acquire("col-1", "price_drop", T0) is True
        assert await store.try_acquire("col-1", "price_drop", T0) is True

    async def test_concurrent_acquire_only_one_wins(self) -> None:
        store = InMemoryCooldownStore(timedelta(minutes=60))
        results = await asyncio.gather(
            *(store.try_acquire("col-1", "price_drop", T0) for _ in range(10))
        )
        assert results.count(True) == 1

    async def test_clear(self) -> None:
        store = InMemoryCooldownStore(timedelta(minutes=60))
        await store.try_acquire("col-1", "price_drop", T0)
        await store.clear()
        assert await store.last_triggered("col-1", "price_drop") is None


class TestRedisCooldownStore:
    """Tests for RedisCooldownStore."""

    async def test_try_acquire_runs_script(self) -> None:
        redis = MagicMock()
        redis.eval = AsyncMock(return_value=1)
        store = RedisCooldownStore(redis, timedelta(minutes=60), key_prefix="test:")

        assert await store.try_acquire("col-1", "price_drop", T0) is True
        args = redis.eval.await_args.args
        assert args[1] == 1
        assert args[2] == "test:cooldown:col-1:price_drop"
        assert args[3] == int(T0.timestamp() * 1000)
        assert args[4] == 3_600_000

    async def test_try_acquire_suppressed(self) -> None:
        redis = MagicMock()
        redis.eval = AsyncMock(return_value=0)
        store = RedisCooldownStore(redis, timedelta(minutes=60))
        assert await store.try_acquire("col-1", "price_drop", T0) is False

    async def test_last_triggered(self) -> None:
        redis = MagicMock()
        redis.get = AsyncMock(return_value=str(int(T0.timestamp() * 1000)).encode())
        store = RedisCooldownStore(redis, timedelta(minutes=60))
        assert await store.last_triggered("col-1", "price_drop") == T0

    async def test_clear_scans_prefix(self) -> None:
        redis = MagicMock()
        redis.scan = AsyncMock(side_effect=[(5, [b"k1"]), (0, [b"k2"])])
        redis.delete = AsyncMock()
        store = RedisCooldownStore(redis, timedelta(minutes=60), key_prefix="test:")

        await store.clear()

        assert redis.delete.await_count == 2
        assert redis.scan.await_args_list[0].kwargs["match"] == "test:cooldown:*"
