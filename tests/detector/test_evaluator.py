"""Tests for the alert evaluator."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from collection_monitor.detector.cooldown import InMemoryCooldownStore
from collection_monitor.detector.evaluator import AlertEvaluator
from collection_monitor.detector.models import AlertThresholds, ListingCounts
from collection_monitor.storage.repos import AlertRepository, ComputedMetricDTO


def metrics_24h(collection_id, now, price=None, volume=None) -> ComputedMetricDTO:
    return ComputedMetricDTO(
        collection_id=collection_id,
        window="24h",
        timestamp=now,
        price_change_24h=price,
        volume_change_24h=volume,
    )


@pytest.fixture
def cooldowns() -> InMemoryCooldownStore:
    return InMemoryCooldownStore(timedelta(minutes=60))


@pytest.fixture
def dispatcher() -> MagicMock:
    return MagicMock()


@pytest.fixture
def evaluator(db, cooldowns, dispatcher) -> AlertEvaluator:
    return AlertEvaluator(db, cooldowns, thresholds=AlertThresholds(), dispatcher=dispatcher)


class TestEvaluate:
    """Tests for AlertEvaluator.evaluate."""

    async def test_all_rules_fire_independently(self, evaluator, dispatcher, db, collection_id, now) -> None:
        alerts = await evaluator.evaluate(
            collection_id,
            metrics_24h(collection_id, now, price=-25.0, volume=80.0),
            ListingCounts(listing_count=50, previous_listing_count=100),
            now=now,
        )

        assert sorted(a.alert_type for a in alerts) == [
            "listing_depletion",
            "price_drop",
            "volume_spike",
        ]
        assert {a.alert_type: a.severity for a in alerts} == {
            "price_drop": "warning",
            "volume_spike": "info",
            "listing_depletion": "critical",
        }
        assert all(a.triggered_at == now for a in alerts)
        assert dispatcher.submit.call_count == 3

        async with db.get_async_session() as session:
            assert await AlertRepository(session).count(collection_id=collection_id) == 3

    async def test_no_signal_no_alert(self, evaluator, dispatcher, collection_id, now) -> None:
        alerts = await evaluator.evaluate(collection_id, None, None, now=now)
        assert alerts == []
        dispatcher.submit.assert_not_called()

    async def test_within_threshold(self, evaluator, collection_id, now) -> None:
        alerts = await evaluator.evaluate(
            collection_id, metrics_24h(collection_id, now, price=-5.0, volume=10.0), now=now
        )
        assert alerts == []

    async def test_cooldown_suppresses_repeat(self, evaluator, db, collection_id, now) -> None:
        metrics = metrics_24h(collection_id, now, price=-25.0)

        first = await evaluator.evaluate(collection_id, metrics, now=now)
        second = await evaluator.evaluate(collection_id, metrics, now=now + timedelta(minutes=30))
        third = await evaluator.evaluate(collection_id, metrics, now=now + timedelta(minutes=61))

        assert len(first) == 1
        assert second == []
        assert len(third) == 1
        async with db.get_async_session() as session:
            assert await AlertRepository(session).count() == 2

    async def test_dry_run_persists_without_dispatch(self, db, cooldowns, dispatcher, collection_id, now) -> None:
        evaluator = AlertEvaluator(db, cooldowns, dispatcher=dispatcher, dry_run=True)

        alerts = await evaluator.evaluate(
            collection_id, metrics_24h(collection_id, now, volume=500.0), now=now
        )

        assert len(alerts) == 1
        dispatcher.submit.assert_not_called()

    async def test_uses_clock_when_now_missing(self, db, cooldowns, collection_id, now) -> None:
        evaluator = AlertEvaluator(db, cooldowns, clock=lambda: now)
        alerts = await evaluator.evaluate(collection_id, metrics_24h(collection_id, now, price=-50.0))
        assert alerts[0].triggered_at == now
        assert await cooldowns.last_triggered(collection_id, "price_drop") == now
