"""SQLAlchemy models for persistent storage.

This module defines the database schema for tracked collections, raw
market events and snapshots, the per-window metrics store, and alert
history.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class CollectionModel(Base):
    """Tracked asset collection metadata."""

    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    extra: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON(none_as_null=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class MarketSnapshotModel(Base):
    """Periodic market snapshot for a collection."""

    __tablename__ = "market_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection_id: Mapped[str] = mapped_column(String(64), nullable=False)
    snapshot_id: Mapped[str] = mapped_column(String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    floor_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    ceiling_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    volume: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    listed_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sales_24h: Mapped[int | None] = mapped_column(Integer, nullable=True)
    raw_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("collection_id", "snapshot_id", name="uq_market_snapshots_snapshot"),
        Index("idx_market_snapshots_collection_ts", "collection_id", "timestamp"),
        Index("idx_market_snapshots_ts", "timestamp"),
    )


class _MarketEventColumns:
    """Columns shared by the listing and purchase event tables."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    side: Mapped[str | None] = mapped_column(String(8), nullable=True)  # buy | sell
    price: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    seller: Mapped[str | None] = mapped_column(String(128), nullable=True)
    buyer: Mapped[str | None] = mapped_column(String(128), nullable=True)
    raw_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        table = cls.__tablename__  # type: ignore[attr-defined]
        return (
            UniqueConstraint("collection_id", "event_id", name=f"uq_{table}_event"),
            Index(f"idx_{table}_collection_ts", "collection_id", "timestamp"),
            Index(f"idx_{table}_ts", "timestamp"),
        )


class ListingEventModel(_MarketEventColumns, Base):
    """Listing events (asks placed on a marketplace)."""

    __tablename__ = "listing_events"


class PurchaseEventModel(_MarketEventColumns, Base):
    """Purchase events (executed sales)."""

    __tablename__ = "purchase_events"


class ComputedMetricModel(Base):
    """Latest rolling-window aggregate per (collection, window).

    Rows are overwritten on every refresh; there is no history.
    """

    __tablename__ = "computed_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection_id: Mapped[str] = mapped_column(String(64), nullable=False)
    window: Mapped[str] = mapped_column("time_window", String(8), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    price_change: Mapped[float | None] = mapped_column(Float, nullable=True)
    average_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    median_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    trade_volume: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    buy_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sell_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    liquidity_ratio: Mapped[float | None] = mapped_column(Float, nullable=True)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    listing_metrics: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    purchase_metrics: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    price_change_24h: Mapped[float | None] = mapped_column(Float, nullable=True)
    volume_change_24h: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("collection_id", "time_window", name="uq_computed_metrics_window"),
        Index("idx_computed_metrics_window", "time_window"),
        Index("idx_computed_metrics_ts", "timestamp"),
    )


class AlertModel(Base):
    """Triggered alert history. Only resolution fields are ever updated."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    collection_id: Mapped[str] = mapped_column(String(64), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_alerts_collection_ts", "collection_id", "triggered_at"),
        Index("idx_alerts_triggered_at", "triggered_at"),
        Index("idx_alerts_resolved", "resolved"),
    )
