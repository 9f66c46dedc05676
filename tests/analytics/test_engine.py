"""Tests for the metrics engine."""

from datetime import timedelta, timezone
from decimal import Decimal

import pytest

from collection_monitor.analytics.engine import MetricsEngine
from collection_monitor.analytics.metrics import MetricWindow
from collection_monitor.storage.repos import EventRepository, MarketEventDTO, MetricsRepository


async def store_events(db, collection_id, now, prices_by_minutes_ago, kind="listing") -> None:
    async with db.get_async_session() as session:
        repo = EventRepository(session)
        for i, (minutes_ago, price) in enumerate(prices_by_minutes_ago):
            await repo.upsert(
                MarketEventDTO(
                    collection_id=collection_id,
                    kind=kind,
                    event_id=f"{kind}-{i}",
                    timestamp=now - timedelta(minutes=minutes_ago),
                    price=Decimal(price),
                    quantity=Decimal("1"),
                )
            )


class TestRefresh:
    """Tests for MetricsEngine.refresh."""

    async def test_computes_and_stores_every_window(self, db, collection_id, now) -> None:
        await store_events(db, collection_id, now, [(30, "100"), (10, "150")])
        engine = MetricsEngine(db, max_workers=2)

        result = await engine.refresh([collection_id], now=now)

        assert set(result[collection_id]) == set(MetricWindow)
        async with db.get_async_session() as session:
            rows = await MetricsRepository(session).list_for_collection(collection_id)
        assert len(rows) == 4
        hour = next(r for r in rows if r.window == "1h")
        assert hour.price_change == pytest.approx(50.0)
        assert hour.average_price == pytest.approx(125.0)
        assert hour.timestamp == now

    async def test_offset_now_is_normalized_to_utc(self, db, collection_id, now) -> None:
        await store_events(db, collection_id, now, [(10, "100")])
        local_now = now.astimezone(timezone(timedelta(hours=-5)))

        result = await MetricsEngine(db).refresh([collection_id], now=local_now)

        hour = result[collection_id][MetricWindow.ONE_HOUR]
        assert hour.event_count == 1
        assert hour.timestamp == now
        assert hour.timestamp.utcoffset() == timedelta(0)

    async def test_recompute_overwrites(self, db, collection_id, now) -> None:
        await store_events(db, collection_id, now, [(30, "100")])
        engine = MetricsEngine(db)
        await engine.refresh([collection_id], now=now)

        # Two hours later the event has left the 1h window
        await engine.refresh([collection_id], now=now + timedelta(hours=2))

        async with db.get_async_session() as session:
            repo = MetricsRepository(session)
            hour = await repo.get(collection_id, "1h")
            six = await repo.get(collection_id, "6h")
            rows = await repo.list_for_collection(collection_id)
        assert len(rows) == 4
        assert hour is not None and hour.event_count == 0
        assert six is not None and six.event_count == 1

    async def test_collection_without_events_gets_empty_rows(self, db, now) -> None:
        engine = MetricsEngine(db)
        result = await engine.refresh(["empty"], now=now)
        assert all(m.event_count == 0 for m in result["empty"].values())

    async def test_refresh_log(self, db, collection_id, now) -> None:
        await store_events(db, collection_id, now, [(5, "1")])
        engine = MetricsEngine(db)
        await engine.refresh([collection_id, "other"], now=now)

        assert engine.refresh_log.last_refresh_time == now
        assert engine.refresh_log.collections_updated == 2
        assert engine.refresh_log.metrics_generated == 8

    async def test_empty_input(self, db) -> None:
        summary = await MetricsEngine(db).refresh_with_summary([])
        assert summary.metrics == {}
        assert summary.failures == []


class TestAfterRefreshHook:
    """Tests for the post-refresh hook."""

    async def test_hook_receives_metrics(self, db, collection_id, now) -> None:
        seen = {}

        async def hook(cid, metrics) -> None:
            seen[cid] = metrics

        engine = MetricsEngine(db, after_refresh=hook)
        await engine.refresh([collection_id], now=now)

        assert set(seen[collection_id]) == set(MetricWindow)

    async def test_failure_is_isolated(self, db, now) -> None:
        async def hook(cid, metrics) -> None:
            if cid == "bad":
                raise RuntimeError("boom")

        engine = MetricsEngine(db, after_refresh=hook)
        summary = await engine.refresh_with_summary(["good", "bad"], now=now)

        assert "good" in summary.metrics
        assert summary.failures == [{"collection_id": "bad", "error": "boom"}]
