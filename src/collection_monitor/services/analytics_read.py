"""Read queries over the metrics store."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from collection_monitor.analytics.metrics import MetricWindow
from collection_monitor.errors import NotFoundError, ValidationError
from collection_monitor.storage.repos import ComputedMetricDTO, MetricsRepository

if TYPE_CHECKING:
    from collection_monitor.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

_WINDOW_ORDER = {w.value: i for i, w in enumerate(sorted(MetricWindow, key=lambda w: w.duration))}


def sort_windows(windows: Iterable[str]) -> list[str]:
    """Order window names shortest first; unknown names go last."""
    return sorted(set(windows), key=lambda w: (_WINDOW_ORDER.get(w, len(_WINDOW_ORDER)), w))


def _parse_windows(windows: Sequence[str] | None) -> list[str] | None:
    if not windows:
        return None
    try:
        return [MetricWindow.parse(w).value for w in windows]
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _latest(metrics: Iterable[ComputedMetricDTO]) -> datetime | None:
    return max((m.timestamp for m in metrics), default=None)


@dataclass
class CollectionAnalytics:
    """All stored windows for one collection."""

    collection_id: str
    metrics: dict[str, ComputedMetricDTO]
    last_updated: datetime | None = None

    @property
    def windows(self) -> list[str]:
        return sort_windows(self.metrics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collectionId": self.collection_id,
            "summary": {
                "totalMetrics": len(self.metrics),
                "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
                "windows": self.windows,
            },
            "metrics": {w: self.metrics[w].to_dict() for w in self.windows},
        }


@dataclass
class WindowStats:
    """Cross-collection statistics for one window."""

    window: str
    total_collections: int = 0
    total_metrics: int = 0
    average_price_change: float = 0.0
    average_trade_volume: float = 0.0
    last_updated: datetime | None = None
    collections: dict[str, list[ComputedMetricDTO]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "windowStats": {
                "window": self.window,
                "totalCollections": self.total_collections,
                "totalMetrics": self.total_metrics,
                "averagePriceChange": self.average_price_change,
                "averageTradeVolume": self.average_trade_volume,
                "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            },
            "collections": {
                cid: [m.to_dict() for m in rows] for cid, rows in self.collections.items()
            },
        }


class AnalyticsReadService:
    """Dashboard-facing queries over computed metrics."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_collection_analytics(
        self, collection_id: str, windows: Sequence[str] | None = None
    ) -> CollectionAnalytics:
        """Return the stored metrics of one collection, keyed by window.

        Raises:
            ValidationError: If a requested window is unknown.
            NotFoundError: If the collection has no metrics.
        """
        wanted = _parse_windows(windows)
        async with self._db.get_async_session() as session:
            rows = await MetricsRepository(session).list_for_collection(
                collection_id, windows=wanted
            )
        if not rows:
            raise NotFoundError("collection analytics", collection_id)
        return CollectionAnalytics(
            collection_id=collection_id,
            metrics={m.window: m for m in rows},
            last_updated=_latest(rows),
        )

    async def get_analytics_summary(
        self,
        collection_ids: Sequence[str] | None = None,
        windows: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        """Summarize the metrics store, grouped per collection."""
        wanted = _parse_windows(windows)
        async with self._db.get_async_session() as session:
            rows = await MetricsRepository(session).find(
                collection_ids=list(collection_ids) if collection_ids else None,
                windows=wanted,
            )

        by_collection: dict[str, list[ComputedMetricDTO]] = {}
        for row in rows:
            by_collection.setdefault(row.collection_id, []).append(row)

        last_updated = _latest(rows)
        return {
            "summary": {
                "totalCollections": len(by_collection),
                "totalMetrics": len(rows),
                "windows": sort_windows(m.window for m in rows),
                "lastUpdated": last_updated.isoformat() if last_updated else None,
            },
            "collections": [
                {
                    "collectionId": cid,
                    "metrics": {m.window: m.to_dict() for m in metrics},
                    "lastUpdated": _latest(metrics).isoformat(),  # type: ignore[union-attr]
                }
                for cid, metrics in by_collection.items()
            ],
        }

    async def get_metrics_by_window(
        self, window: str, collection_ids: Sequence[str] | None = None
    ) -> WindowStats:
        """Return one window's rows across collections with averages.

        Null price changes count toward the divisor but not the sum.

        Raises:
            ValidationError: If the window is unknown.
        """
        try:
            parsed = MetricWindow.parse(window)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        async with self._db.get_async_session() as session:
            rows = await MetricsRepository(session).list_by_window(
                parsed.value,
                collection_ids=list(collection_ids) if collection_ids else None,
            )

        stats = WindowStats(window=parsed.value, total_metrics=len(rows))
        for row in rows:
            stats.collections.setdefault(row.collection_id, []).append(row)
        stats.total_collections = len(stats.collections)
        stats.last_updated = _latest(rows)

        if rows:
            stats.average_price_change = sum(r.price_change or 0.0 for r in rows) / len(rows)
            stats.average_trade_volume = sum(r.trade_volume or 0.0 for r in rows) / len(rows)
        return stats

    async def get_available_windows(self) -> list[str]:
        """Windows that currently have at least one stored row."""
        async with self._db.get_async_session() as session:
            windows = await MetricsRepository(session).list_windows()
        return sort_windows(windows)
