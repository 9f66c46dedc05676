"""Tests for event intake."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from collection_monitor.errors import PersistenceError
from collection_monitor.ingestor.dirty_set import InMemoryDirtySet
from collection_monitor.ingestor.intake import EventIntake, synthesize_record_id
from collection_monitor.ingestor.models import CollectionMetadata, MarketEvent
from collection_monitor.storage.repos import CollectionRepository, EventRepository, SnapshotRepository


@pytest.fixture
def dirty() -> InMemoryDirtySet:
    return InMemoryDirtySet()


@pytest.fixture
def intake(db, dirty) -> EventIntake:
    return EventIntake(db, dirty)


class TestSynthesizeRecordId:
    """Tests for fallback id generation."""

    def test_prefix_is_epoch_millis(self) -> None:
        ts = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
        record_id = synthesize_record_id(ts)
        assert record_id.startswith(f"{int(ts.timestamp() * 1000)}-")

    def test_ids_differ(self) -> None:
        ts = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
        assert synthesize_record_id(ts) != synthesize_record_id(ts)


class TestIngest:
    """Tests for EventIntake.ingest."""

    async def test_accepts_and_marks_dirty(self, intake, dirty, db, collection_id, now) -> None:
        result = await intake.ingest(
            collection_id,
            {"id": "evt-1", "timestamp": now.isoformat(), "price": "1.0"},
            kind="listing",
        )

        assert result.accepted is True
        assert result.record_id == "evt-1"
        assert await dirty.drain() == {collection_id}
        async with db.get_async_session() as session:
            assert await EventRepository(session).count(collection_id, "listing") == 1

    async def test_duplicate_id_is_stored_once(self, intake, db, collection_id, now) -> None:
        event = {"id": "evt-1", "timestamp": now.isoformat(), "price": "1.0"}
        await intake.ingest(collection_id, event, kind="purchase")
        await intake.ingest(collection_id, event, kind="purchase")

        async with db.get_async_session() as session:
            assert await EventRepository(session).count(collection_id, "purchase") == 1

    async def test_missing_id_is_synthesized(self, intake, db, collection_id, now) -> None:
        event = {"timestamp": now.isoformat(), "price": "1.0"}
        first = await intake.ingest(collection_id, event, kind="listing")
        second = await intake.ingest(collection_id, event, kind="listing")

        assert first.record_id and first.record_id.startswith(str(int(now.timestamp() * 1000)))
        assert first.record_id != second.record_id
        async with db.get_async_session() as session:
            assert await EventRepository(session).count(collection_id, "listing") == 2

    async def test_kind_from_payload(self, intake, collection_id) -> None:
        result = await intake.ingest(collection_id, {"id": "e", "kind": "purchase"})
        assert result.accepted is True
        assert result.kind == "purchase"

    async def test_accepts_parsed_event(self, intake, collection_id, now) -> None:
        event = MarketEvent(collection_id=collection_id, kind="listing", timestamp=now, event_id="e1")
        result = await intake.ingest(collection_id, event)
        assert result.accepted is True

    async def test_rejects_malformed_without_marking_dirty(self, intake, dirty, collection_id) -> None:
        result = await intake.ingest(collection_id, {"id": "e", "price": "free"}, kind="listing")

        assert result.accepted is False
        assert "price" in (result.reason or "")
        assert await dirty.size() == 0

    async def test_rejects_unknown_kind(self, intake, collection_id) -> None:
        result = await intake.ingest(collection_id, {"id": "e"})
        assert result.accepted is False

    async def test_rejects_mismatched_collection(self, intake, now) -> None:
        event = MarketEvent(collection_id="other", kind="listing", timestamp=now, event_id="e1")
        result = await intake.ingest("col-1", event)
        assert result.accepted is False

    async def test_store_failure_raises_and_skips_dirty(self, dirty, collection_id) -> None:
        db = MagicMock()
        db.get_async_session.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        intake = EventIntake(db, dirty)

        with pytest.raises(PersistenceError):
            await intake.ingest(collection_id, {"id": "e1"}, kind="listing")
        assert await dirty.size() == 0


class TestIngestSnapshot:
    """Tests for EventIntake.ingest_snapshot."""

    async def test_snapshot_stored(self, intake, dirty, db, collection_id, now) -> None:
        result = await intake.ingest_snapshot(
            collection_id,
            {"id": "s1", "timestamp": (now - timedelta(hours=1)).isoformat(), "listedCount": 12},
        )

        assert result.accepted is True
        assert result.kind == "snapshot"
        assert await dirty.drain() == {collection_id}
        async with db.get_async_session() as session:
            latest = await SnapshotRepository(session).get_latest(collection_id)
        assert latest[0].listed_count == 12

    async def test_snapshot_rejected(self, intake, collection_id) -> None:
        result = await intake.ingest_snapshot(collection_id, {"listedCount": "many"})
        assert result.accepted is False


class TestUpsertMetadata:
    """Tests for EventIntake.upsert_metadata."""

    async def test_metadata_does_not_mark_dirty(self, intake, dirty, db, collection_id) -> None:
        await intake.upsert_metadata(CollectionMetadata(collection_id=collection_id, name="Azuki"))

        assert await dirty.size() == 0
        async with db.get_async_session() as session:
            stored = await CollectionRepository(session).get(collection_id)
        assert stored is not None
        assert stored.name == "Azuki"
