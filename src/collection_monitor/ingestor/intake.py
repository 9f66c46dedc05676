"""Event intake: validation, identity synthesis and idempotent storage.

Accepted records are upserted into the event store and their collection is
marked dirty. Nothing is computed inline; metrics wait for the next
refresh cycle.
"""

from __future__ import annotations

import dataclasses
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from collection_monitor.errors import PersistenceError, ValidationError
from collection_monitor.ingestor.models import (
    CollectionMetadata,
    EventKind,
    MarketEvent,
    MarketSnapshot,
    validate_collection_id,
)
from collection_monitor.locks import KeyedLock
from collection_monitor.storage.repos import (
    CollectionDTO,
    CollectionRepository,
    EventRepository,
    MarketEventDTO,
    SnapshotDTO,
    SnapshotRepository,
)

if TYPE_CHECKING:
    from collection_monitor.ingestor.dirty_set import DirtySet
    from collection_monitor.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


def synthesize_record_id(timestamp: datetime) -> str:
    """Build a fallback id from the record time plus a random suffix.

    Two deliveries of the same id-less record get different ids, so they
    are not deduplicated.
    """
    return f"{int(timestamp.timestamp() * 1000)}-{secrets.token_hex(4)}"


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one intake call."""

    accepted: bool
    collection_id: str | None = None
    kind: str | None = None
    record_id: str | None = None
    reason: str | None = None


class EventIntake:
    """Validates and stores market events and snapshots.

    Writes for one collection are serialized through ``locks``; the dirty
    mark is only set after the write has committed.
    """

    def __init__(
        self,
        db: DatabaseManager,
        dirty_set: DirtySet,
        *,
        locks: KeyedLock | None = None,
    ) -> None:
        self._db = db
        self._dirty = dirty_set
        self._locks = locks or KeyedLock()

    async def ingest(
        self,
        collection_id: str,
        event: MarketEvent | dict[str, Any],
        *,
        kind: EventKind | None = None,
    ) -> IngestResult:
        """Ingest one listing or purchase event.

        Args:
            collection_id: Collection the event belongs to.
            event: Parsed event or raw producer payload.
            kind: Event kind, required for raw payloads without a ``kind`` key.

        Returns:
            IngestResult with ``accepted=False`` and a reason for malformed input.

        Raises:
            PersistenceError: If the store rejects the write (safe to retry).
        """
        try:
            parsed = self._parse_event(collection_id, event, kind)
        except ValidationError as e:
            logger.debug("Rejected event for %s: %s", collection_id, e)
            return IngestResult(accepted=False, collection_id=collection_id, kind=kind, reason=str(e))

        if parsed.event_id is None:
            parsed = dataclasses.replace(parsed, event_id=synthesize_record_id(parsed.timestamp))
            logger.debug("Synthesized id %s for %s event", parsed.event_id, parsed.kind)

        dto = MarketEventDTO(
            collection_id=parsed.collection_id,
            kind=parsed.kind,
            event_id=parsed.event_id,  # type: ignore[arg-type]
            timestamp=parsed.timestamp,
            side=parsed.side,
            price=parsed.price,
            quantity=parsed.quantity,
            seller=parsed.seller,
            buyer=parsed.buyer,
            raw_payload=parsed.raw or None,
        )
        async with self._locks.hold(parsed.collection_id):
            try:
                async with self._db.get_async_session() as session:
                    await EventRepository(session).upsert(dto)
            except SQLAlchemyError as e:
                raise PersistenceError(
                    f"Failed to store {parsed.kind} event {parsed.event_id} for {parsed.collection_id}: {e}"
                ) from e
            await self._dirty.add(parsed.collection_id)

        return IngestResult(
            accepted=True,
            collection_id=parsed.collection_id,
            kind=parsed.kind,
            record_id=parsed.event_id,
        )

    async def ingest_snapshot(
        self,
        collection_id: str,
        snapshot: MarketSnapshot | dict[str, Any],
    ) -> IngestResult:
        """Ingest one market snapshot; same rules as :meth:`ingest`."""
        try:
            if isinstance(snapshot, MarketSnapshot):
                parsed = snapshot
            else:
                parsed = MarketSnapshot.from_dict(
                    snapshot, collection_id=validate_collection_id(collection_id)
                )
        except ValidationError as e:
            logger.debug("Rejected snapshot for %s: %s", collection_id, e)
            return IngestResult(accepted=False, collection_id=collection_id, kind="snapshot", reason=str(e))

        if parsed.snapshot_id is None:
            parsed = dataclasses.replace(parsed, snapshot_id=synthesize_record_id(parsed.timestamp))

        dto = SnapshotDTO(
            collection_id=parsed.collection_id,
            snapshot_id=parsed.snapshot_id,  # type: ignore[arg-type]
            timestamp=parsed.timestamp,
            floor_price=parsed.floor_price,
            ceiling_price=parsed.ceiling_price,
            volume=parsed.volume,
            listed_count=parsed.listed_count,
            sales_24h=parsed.sales_24h,
            raw_payload=parsed.raw or None,
        )
        async with self._locks.hold(parsed.collection_id):
            try:
                async with self._db.get_async_session() as session:
                    await SnapshotRepository(session).upsert(dto)
            except SQLAlchemyError as e:
                raise PersistenceError(
                    f"Failed to store snapshot {parsed.snapshot_id} for {parsed.collection_id}: {e}"
                ) from e
            await self._dirty.add(parsed.collection_id)

        return IngestResult(
            accepted=True,
            collection_id=parsed.collection_id,
            kind="snapshot",
            record_id=parsed.snapshot_id,
        )

    async def upsert_metadata(self, metadata: CollectionMetadata) -> None:
        """Create or update collection metadata. Does not mark the collection dirty."""
        dto = CollectionDTO(
            id=metadata.collection_id,
            name=metadata.name,
            slug=metadata.slug,
            source=metadata.source,
            extra=metadata.extra,
            updated_at=datetime.now(UTC),
        )
        async with self._locks.hold(metadata.collection_id):
            try:
                async with self._db.get_async_session() as session:
                    await CollectionRepository(session).upsert(dto)
            except SQLAlchemyError as e:
                raise PersistenceError(
                    f"Failed to store metadata for {metadata.collection_id}: {e}"
                ) from e

    @staticmethod
    def _parse_event(
        collection_id: str,
        event: MarketEvent | dict[str, Any],
        kind: EventKind | None,
    ) -> MarketEvent:
        cid = validate_collection_id(collection_id)
        if isinstance(event, MarketEvent):
            if event.collection_id != cid:
                raise ValidationError(
                    f"event belongs to {event.collection_id}, not {cid}"
                )
            return event
        if not isinstance(event, dict):
            raise ValidationError(f"event must be an object, got {type(event).__name__}")
        resolved_kind = kind or event.get("kind")
        if resolved_kind not in ("listing", "purchase"):
            raise ValidationError(f"unknown event kind: {resolved_kind!r}")
        return MarketEvent.from_dict(event, kind=resolved_kind, collection_id=cid)
