"""Repository pattern implementations for data access.

This module provides clean data access abstractions for collections,
market events and snapshots, computed metrics, alerts and retention.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from collection_monitor.storage.models import (
    AlertModel,
    CollectionModel,
    ComputedMetricModel,
    ListingEventModel,
    MarketSnapshotModel,
    PurchaseEventModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

EventKind = Literal["listing", "purchase"]

EVENT_MODELS: dict[str, type[ListingEventModel] | type[PurchaseEventModel]] = {
    "listing": ListingEventModel,
    "purchase": PurchaseEventModel,
}

# Tables subject to retention, keyed by table name. Every model here has
# integer ``id`` and ``timestamp`` columns.
RETENTION_MODELS: dict[str, Any] = {
    MarketSnapshotModel.__tablename__: MarketSnapshotModel,
    ListingEventModel.__tablename__: ListingEventModel,
    PurchaseEventModel.__tablename__: PurchaseEventModel,
    ComputedMetricModel.__tablename__: ComputedMetricModel,
}


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _insert_for(session: AsyncSession, model: Any) -> Any:
    """Return a dialect-specific INSERT supporting ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise RuntimeError(f"Upsert is not supported for dialect {dialect!r}")


# ============================================================================
# DTOs
# ============================================================================


@dataclass
class CollectionDTO:
    """Data transfer object for collection metadata."""

    id: str
    name: str | None = None
    slug: str | None = None
    source: str | None = None
    extra: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CollectionModel) -> CollectionDTO:
        return cls(
            id=model.id,
            name=model.name,
            slug=model.slug,
            source=model.source,
            extra=model.extra,
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )


@dataclass
class MarketEventDTO:
    """Data transfer object for listing and purchase events."""

    collection_id: str
    kind: EventKind
    event_id: str
    timestamp: datetime
    side: str | None = None
    price: Decimal | None = None
    quantity: Decimal | None = None
    seller: str | None = None
    buyer: str | None = None
    raw_payload: dict[str, Any] | None = None

    @classmethod
    def from_model(
        cls, model: ListingEventModel | PurchaseEventModel, kind: EventKind
    ) -> MarketEventDTO:
        return cls(
            collection_id=model.collection_id,
            kind=kind,
            event_id=model.event_id,
            timestamp=as_utc(model.timestamp),  # type: ignore[arg-type]
            side=model.side,
            price=model.price,
            quantity=model.quantity,
            seller=model.seller,
            buyer=model.buyer,
            raw_payload=model.raw_payload,
        )


@dataclass
class SnapshotDTO:
    """Data transfer object for market snapshots."""

    collection_id: str
    snapshot_id: str
    timestamp: datetime
    floor_price: Decimal | None = None
    ceiling_price: Decimal | None = None
    volume: Decimal | None = None
    listed_count: int | None = None
    sales_24h: int | None = None
    raw_payload: dict[str, Any] | None = None

    @classmethod
    def from_model(cls, model: MarketSnapshotModel) -> SnapshotDTO:
        return cls(
            collection_id=model.collection_id,
            snapshot_id=model.snapshot_id,
            timestamp=as_utc(model.timestamp),  # type: ignore[arg-type]
            floor_price=model.floor_price,
            ceiling_price=model.ceiling_price,
            volume=model.volume,
            listed_count=model.listed_count,
            sales_24h=model.sales_24h,
            raw_payload=model.raw_payload,
        )


@dataclass
class ComputedMetricDTO:
    """Data transfer object for one (collection, window) metrics row."""

    collection_id: str
    window: str
    timestamp: datetime
    price_change: float | None = None
    average_price: float | None = None
    median_price: float | None = None
    trade_volume: float = 0.0
    buy_count: int = 0
    sell_count: int = 0
    liquidity_ratio: float | None = None
    event_count: int = 0
    listing_metrics: dict[str, Any] | None = None
    purchase_metrics: dict[str, Any] | None = None
    price_change_24h: float | None = None
    volume_change_24h: float | None = None

    @classmethod
    def from_model(cls, model: ComputedMetricModel) -> ComputedMetricDTO:
        return cls(
            collection_id=model.collection_id,
            window=model.window,
            timestamp=as_utc(model.timestamp),  # type: ignore[arg-type]
            price_change=model.price_change,
            average_price=model.average_price,
            median_price=model.median_price,
            trade_volume=model.trade_volume,
            buy_count=model.buy_count,
            sell_count=model.sell_count,
            liquidity_ratio=model.liquidity_ratio,
            event_count=model.event_count,
            listing_metrics=model.listing_metrics,
            purchase_metrics=model.purchase_metrics,
            price_change_24h=model.price_change_24h,
            volume_change_24h=model.volume_change_24h,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for read queries."""
        return {
            "collection_id": self.collection_id,
            "window": self.window,
            "timestamp": self.timestamp.isoformat(),
            "price_change": self.price_change,
            "average_price": self.average_price,
            "median_price": self.median_price,
            "trade_volume": self.trade_volume,
            "buy_count": self.buy_count,
            "sell_count": self.sell_count,
            "liquidity_ratio": self.liquidity_ratio,
            "event_count": self.event_count,
            "listing_metrics": self.listing_metrics,
            "purchase_metrics": self.purchase_metrics,
            "price_change_24h": self.price_change_24h,
            "volume_change_24h": self.volume_change_24h,
        }


@dataclass
class AlertDTO:
    """Data transfer object for alerts."""

    id: str
    collection_id: str
    alert_type: str
    severity: str
    message: str
    triggered_at: datetime
    resolved: bool = False
    resolved_at: datetime | None = None
    created_at: datetime | None = field(default=None, compare=False)

    @classmethod
    def from_model(cls, model: AlertModel) -> AlertDTO:
        return cls(
            id=model.id,
            collection_id=model.collection_id,
            alert_type=model.alert_type,
            severity=model.severity,
            message=model.message,
            triggered_at=as_utc(model.triggered_at),  # type: ignore[arg-type]
            resolved=model.resolved,
            resolved_at=as_utc(model.resolved_at),
            created_at=as_utc(model.created_at),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for read queries."""
        return {
            "id": self.id,
            "collection_id": self.collection_id,
            "type": self.alert_type,
            "severity": self.severity,
            "message": self.message,
            "triggered_at": self.triggered_at.isoformat(),
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


# ============================================================================
# Repositories
# ============================================================================


class CollectionRepository:
    """Repository for collection metadata."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, collection_id: str) -> CollectionDTO | None:
        result = await self.session.execute(
            select(CollectionModel).where(CollectionModel.id == collection_id)
        )
        model = result.scalar_one_or_none()
        return CollectionDTO.from_model(model) if model else None

    async def exists(self, collection_id: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(CollectionModel).where(CollectionModel.id == collection_id)
        )
        return int(result.scalar_one()) > 0

    async def list_ids(self) -> list[str]:
        result = await self.session.execute(select(CollectionModel.id).order_by(CollectionModel.id))
        return list(result.scalars().all())

    async def upsert(self, dto: CollectionDTO) -> CollectionDTO:
        """Insert collection metadata or update the non-null fields."""
        now = datetime.now(UTC)
        values = {
            "id": dto.id,
            "name": dto.name,
            "slug": dto.slug,
            "source": dto.source,
            "metadata": dto.extra,
        }
        # Core table: the "metadata" column name shadows DeclarativeBase.metadata
        table = CollectionModel.__table__
        stmt = _insert_for(self.session, table).values(**values, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "name": func.coalesce(stmt.excluded["name"], table.c["name"]),
                "slug": func.coalesce(stmt.excluded["slug"], table.c["slug"]),
                "source": func.coalesce(stmt.excluded["source"], table.c["source"]),
                "metadata": func.coalesce(stmt.excluded["metadata"], table.c["metadata"]),
                "updated_at": stmt.excluded["updated_at"],
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto


class EventRepository:
    """Repository for listing and purchase events.

    Events are idempotent by ``(collection_id, event_id)`` within each kind.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: MarketEventDTO) -> MarketEventDTO:
        """Upsert an event by identity (re-ingesting is a no-op for true duplicates)."""
        model = EVENT_MODELS[dto.kind]
        values = {
            "collection_id": dto.collection_id,
            "event_id": dto.event_id,
            "timestamp": dto.timestamp,
            "side": dto.side,
            "price": dto.price,
            "quantity": dto.quantity,
            "seller": dto.seller,
            "buyer": dto.buyer,
            "raw_payload": dto.raw_payload,
        }
        stmt = _insert_for(self.session, model).values(**values, created_at=datetime.now(UTC))
        stmt = stmt.on_conflict_do_update(
            index_elements=["collection_id", "event_id"],
            set_={
                "timestamp": stmt.excluded.timestamp,
                "side": stmt.excluded.side,
                "price": stmt.excluded.price,
                "quantity": stmt.excluded.quantity,
                "seller": stmt.excluded.seller,
                "buyer": stmt.excluded.buyer,
                "raw_payload": stmt.excluded.raw_payload,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def get(self, collection_id: str, kind: EventKind, event_id: str) -> MarketEventDTO | None:
        model = EVENT_MODELS[kind]
        result = await self.session.execute(
            select(model).where((model.collection_id == collection_id) & (model.event_id == event_id))
        )
        row = result.scalar_one_or_none()
        return MarketEventDTO.from_model(row, kind) if row else None

    async def count(self, collection_id: str, kind: EventKind) -> int:
        model = EVENT_MODELS[kind]
        result = await self.session.execute(
            select(func.count()).select_from(model).where(model.collection_id == collection_id)
        )
        return int(result.scalar_one())

    async def list_between(
        self,
        collection_id: str,
        kind: EventKind,
        *,
        start: datetime,
        end: datetime,
    ) -> list[MarketEventDTO]:
        """Return events with ``start <= timestamp <= end`` in time order."""
        model = EVENT_MODELS[kind]
        start, end = as_utc(start), as_utc(end)
        result = await self.session.execute(
            select(model)
            .where(
                (model.collection_id == collection_id)
                & (model.timestamp >= start)
                & (model.timestamp <= end)
            )
            .order_by(model.timestamp.asc(), model.id.asc())
        )
        return [MarketEventDTO.from_model(m, kind) for m in result.scalars().all()]


class SnapshotRepository:
    """Repository for market snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: SnapshotDTO) -> SnapshotDTO:
        values = {
            "collection_id": dto.collection_id,
            "snapshot_id": dto.snapshot_id,
            "timestamp": dto.timestamp,
            "floor_price": dto.floor_price,
            "ceiling_price": dto.ceiling_price,
            "volume": dto.volume,
            "listed_count": dto.listed_count,
            "sales_24h": dto.sales_24h,
            "raw_payload": dto.raw_payload,
        }
        stmt = _insert_for(self.session, MarketSnapshotModel).values(
            **values, created_at=datetime.now(UTC)
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["collection_id", "snapshot_id"],
            set_={
                "timestamp": stmt.excluded.timestamp,
                "floor_price": stmt.excluded.floor_price,
                "ceiling_price": stmt.excluded.ceiling_price,
                "volume": stmt.excluded.volume,
                "listed_count": stmt.excluded.listed_count,
                "sales_24h": stmt.excluded.sales_24h,
                "raw_payload": stmt.excluded.raw_payload,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def count(self, collection_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(MarketSnapshotModel)
            .where(MarketSnapshotModel.collection_id == collection_id)
        )
        return int(result.scalar_one())

    async def get_latest(self, collection_id: str, *, limit: int = 2) -> list[SnapshotDTO]:
        """Return the most recent snapshots, newest first."""
        result = await self.session.execute(
            select(MarketSnapshotModel)
            .where(MarketSnapshotModel.collection_id == collection_id)
            .order_by(MarketSnapshotModel.timestamp.desc(), MarketSnapshotModel.id.desc())
            .limit(limit)
        )
        return [SnapshotDTO.from_model(m) for m in result.scalars().all()]


class MetricsRepository:
    """Repository for the per-window metrics store (overwrite semantics)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: ComputedMetricDTO) -> ComputedMetricDTO:
        values = {
            "collection_id": dto.collection_id,
            "time_window": dto.window,
            "timestamp": dto.timestamp,
            "price_change": dto.price_change,
            "average_price": dto.average_price,
            "median_price": dto.median_price,
            "trade_volume": dto.trade_volume,
            "buy_count": dto.buy_count,
            "sell_count": dto.sell_count,
            "liquidity_ratio": dto.liquidity_ratio,
            "event_count": dto.event_count,
            "listing_metrics": dto.listing_metrics,
            "purchase_metrics": dto.purchase_metrics,
            "price_change_24h": dto.price_change_24h,
            "volume_change_24h": dto.volume_change_24h,
        }
        stmt = _insert_for(self.session, ComputedMetricModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["collection_id", "time_window"],
            set_={k: stmt.excluded[k] for k in values if k not in ("collection_id", "time_window")},
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def get(self, collection_id: str, window: str) -> ComputedMetricDTO | None:
        result = await self.session.execute(
            select(ComputedMetricModel).where(
                (ComputedMetricModel.collection_id == collection_id)
                & (ComputedMetricModel.window == window)
            )
        )
        model = result.scalar_one_or_none()
        return ComputedMetricDTO.from_model(model) if model else None

    async def list_for_collection(
        self, collection_id: str, *, windows: list[str] | None = None
    ) -> list[ComputedMetricDTO]:
        stmt = select(ComputedMetricModel).where(ComputedMetricModel.collection_id == collection_id)
        if windows:
            stmt = stmt.where(ComputedMetricModel.window.in_(windows))
        result = await self.session.execute(stmt.order_by(ComputedMetricModel.timestamp.desc()))
        return [ComputedMetricDTO.from_model(m) for m in result.scalars().all()]

    async def find(
        self,
        *,
        collection_ids: list[str] | None = None,
        windows: list[str] | None = None,
    ) -> list[ComputedMetricDTO]:
        stmt = select(ComputedMetricModel)
        if collection_ids:
            stmt = stmt.where(ComputedMetricModel.collection_id.in_(collection_ids))
        if windows:
            stmt = stmt.where(ComputedMetricModel.window.in_(windows))
        result = await self.session.execute(
            stmt.order_by(ComputedMetricModel.collection_id.asc(), ComputedMetricModel.window.asc())
        )
        return [ComputedMetricDTO.from_model(m) for m in result.scalars().all()]

    async def list_by_window(
        self, window: str, *, collection_ids: list[str] | None = None
    ) -> list[ComputedMetricDTO]:
        stmt = select(ComputedMetricModel).where(ComputedMetricModel.window == window)
        if collection_ids:
            stmt = stmt.where(ComputedMetricModel.collection_id.in_(collection_ids))
        result = await self.session.execute(stmt.order_by(ComputedMetricModel.collection_id.asc()))
        return [ComputedMetricDTO.from_model(m) for m in result.scalars().all()]

    async def list_windows(self) -> list[str]:
        result = await self.session.execute(select(ComputedMetricModel.window).distinct())
        return list(result.scalars().all())

    async def list_collection_ids(self) -> list[str]:
        """Collections that have at least one metrics row."""
        result = await self.session.execute(
            select(ComputedMetricModel.collection_id)
            .distinct()
            .order_by(ComputedMetricModel.collection_id.asc())
        )
        return list(result.scalars().all())


class AlertRepository:
    """Repository for alert history."""

    SEVERITY_RANK = {"info": 0, "warning": 1, "critical": 2}

    SORT_COLUMNS = {
        "triggered_at": AlertModel.triggered_at,
        # Severity sorts by rank, not alphabetically
        "severity": case(SEVERITY_RANK, value=AlertModel.severity, else_=-1),
        "type": AlertModel.alert_type,
    }

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, dto: AlertDTO) -> AlertDTO:
        model = AlertModel(
            id=dto.id,
            collection_id=dto.collection_id,
            alert_type=dto.alert_type,
            severity=dto.severity,
            message=dto.message,
            triggered_at=dto.triggered_at,
            resolved=dto.resolved,
            resolved_at=dto.resolved_at,
        )
        self.session.add(model)
        await self.session.flush()
        return dto

    async def get(self, alert_id: str) -> AlertDTO | None:
        result = await self.session.execute(select(AlertModel).where(AlertModel.id == alert_id))
        model = result.scalar_one_or_none()
        return AlertDTO.from_model(model) if model else None

    @staticmethod
    def _filtered(
        stmt: Any,
        *,
        collection_id: str | None = None,
        severity: str | None = None,
        alert_type: str | None = None,
        resolved: bool | None = None,
        since: datetime | None = None,
    ) -> Any:
        if collection_id is not None:
            stmt = stmt.where(AlertModel.collection_id == collection_id)
        if severity is not None:
            stmt = stmt.where(AlertModel.severity == severity)
        if alert_type is not None:
            stmt = stmt.where(AlertModel.alert_type == alert_type)
        if resolved is not None:
            stmt = stmt.where(AlertModel.resolved.is_(resolved))
        if since is not None:
            stmt = stmt.where(AlertModel.triggered_at >= as_utc(since))
        return stmt

    async def find(
        self,
        *,
        collection_id: str | None = None,
        severity: str | None = None,
        alert_type: str | None = None,
        resolved: bool | None = None,
        since: datetime | None = None,
        sort_by: str = "triggered_at",
        sort_order: Literal["asc", "desc"] = "desc",
        offset: int = 0,
        limit: int | None = None,
    ) -> list[AlertDTO]:
        column = self.SORT_COLUMNS[sort_by]
        ordering = column.asc() if sort_order == "asc" else column.desc()
        stmt = self._filtered(
            select(AlertModel),
            collection_id=collection_id,
            severity=severity,
            alert_type=alert_type,
            resolved=resolved,
            since=since,
        ).order_by(ordering, AlertModel.id.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [AlertDTO.from_model(m) for m in result.scalars().all()]

    async def count(self, **filters: Any) -> int:
        stmt = self._filtered(select(func.count()).select_from(AlertModel), **filters)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def count_by(
        self, group: Literal["severity", "type", "collection"], **filters: Any
    ) -> dict[str, int]:
        """Count alerts grouped by one column."""
        column = {
            "severity": AlertModel.severity,
            "type": AlertModel.alert_type,
            "collection": AlertModel.collection_id,
        }[group]
        stmt = self._filtered(
            select(column, func.count()).select_from(AlertModel), **filters
        ).group_by(column)
        result = await self.session.execute(stmt)
        return {str(key): int(n) for key, n in result.all()}

    async def resolve(self, alert_id: str, *, resolved_at: datetime | None = None) -> AlertDTO | None:
        """Mark an alert resolved. Already-resolved alerts keep their first timestamp."""
        when = resolved_at or datetime.now(UTC)
        await self.session.execute(
            update(AlertModel)
            .where((AlertModel.id == alert_id) & (AlertModel.resolved.is_(False)))
            .values(resolved=True, resolved_at=when)
        )
        await self.session.flush()
        self.session.expire_all()
        return await self.get(alert_id)


class RetentionRepository:
    """Bounded-batch deletion of expired rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def delete_expired_batch(self, table: str, *, cutoff: datetime, limit: int) -> int:
        """Delete up to ``limit`` rows with ``timestamp < cutoff``; returns rows deleted."""
        model = RETENTION_MODELS[table]
        cutoff = as_utc(cutoff)
        ids_result = await self.session.execute(
            select(model.id)
            .where(model.timestamp < cutoff)
            .order_by(model.timestamp.asc(), model.id.asc())
            .limit(limit)
        )
        ids = list(ids_result.scalars().all())
        if not ids:
            return 0
        await self.session.execute(delete(model).where(model.id.in_(ids)))
        await self.session.flush()
        return len(ids)

    async def count_expired(self, table: str, *, cutoff: datetime) -> int:
        model = RETENTION_MODELS[table]
        result = await self.session.execute(
            select(func.count()).select_from(model).where(model.timestamp < cutoff)
        )
        return int(result.scalar_one())
