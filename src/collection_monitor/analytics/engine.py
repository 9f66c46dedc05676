"""Metrics engine: turns stored events into per-window metrics rows."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from collection_monitor.analytics.metrics import WIDEST_WINDOW, MetricWindow, compute_all_windows
from collection_monitor.locks import KeyedLock
from collection_monitor.storage.repos import (
    ComputedMetricDTO,
    EventRepository,
    MetricsRepository,
    as_utc,
)

if TYPE_CHECKING:
    from collection_monitor.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

CollectionMetrics = dict[MetricWindow, ComputedMetricDTO]
AfterRefreshHook = Callable[[str, CollectionMetrics], Awaitable[None]]


@dataclass
class RefreshLog:
    """Outcome of the most recent refresh cycle."""

    last_refresh_time: datetime | None = None
    collections_updated: int = 0
    metrics_generated: int = 0


@dataclass
class RefreshSummary:
    """Per-cycle refresh result with partial-failure reporting."""

    metrics: dict[str, CollectionMetrics] = field(default_factory=dict)
    failures: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def collections_updated(self) -> int:
        return len(self.metrics)

    @property
    def metrics_generated(self) -> int:
        return sum(len(m) for m in self.metrics.values())


class MetricsEngine:
    """Computes and upserts rolling-window metrics.

    Collections are refreshed concurrently up to ``max_workers`` at a time.
    Within one collection the load, compute, upsert and optional
    ``after_refresh`` hook run in order under that collection's lock.
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        max_workers: int | None = None,
        locks: KeyedLock | None = None,
        after_refresh: AfterRefreshHook | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._max_workers = max_workers or os.cpu_count() or 4
        self._locks = locks or KeyedLock()
        self._after_refresh = after_refresh
        self._clock = clock or (lambda: datetime.now(UTC))
        self.refresh_log = RefreshLog()

    async def refresh(
        self, collection_ids: Iterable[str], *, now: datetime | None = None
    ) -> dict[str, CollectionMetrics]:
        """Refresh the given collections and return their metrics by window.

        Collections that fail are logged and left out of the result; use
        :meth:`refresh_with_summary` to see the failures.
        """
        summary = await self.refresh_with_summary(collection_ids, now=now)
        return summary.metrics

    async def refresh_with_summary(
        self, collection_ids: Iterable[str], *, now: datetime | None = None
    ) -> RefreshSummary:
        started = time.monotonic()
        as_of = as_utc(now or self._clock())
        ids = sorted(set(collection_ids))
        summary = RefreshSummary()
        if not ids:
            return summary

        semaphore = asyncio.Semaphore(self._max_workers)

        async def _run(collection_id: str) -> None:
            async with semaphore:
                try:
                    async with self._locks.hold(collection_id):
                        metrics = await self.refresh_collection(collection_id, now=as_of)
                        summary.metrics[collection_id] = metrics
                        if self._after_refresh is not None:
                            await self._after_refresh(collection_id, metrics)
                except Exception as e:
                    logger.exception("Metrics refresh failed for %s", collection_id)
                    summary.failures.append({"collection_id": collection_id, "error": str(e)})

        await asyncio.gather(*(_run(cid) for cid in ids))

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        self.refresh_log = RefreshLog(
            last_refresh_time=as_of,
            collections_updated=summary.collections_updated,
            metrics_generated=summary.metrics_generated,
        )
        logger.info(
            "Refreshed metrics for %d/%d collections (%d rows, %d failures) in %dms",
            summary.collections_updated,
            len(ids),
            summary.metrics_generated,
            len(summary.failures),
            summary.duration_ms,
        )
        return summary

    async def refresh_collection(self, collection_id: str, *, now: datetime) -> CollectionMetrics:
        """Compute and upsert all windows for one collection.

        Callers are responsible for holding the collection's lock.
        """
        start = now - WIDEST_WINDOW.duration
        async with self._db.get_async_session() as session:
            events = EventRepository(session)
            listings = await events.list_between(collection_id, "listing", start=start, end=now)
            purchases = await events.list_between(collection_id, "purchase", start=start, end=now)

            results = compute_all_windows(
                collection_id, listings=listings, purchases=purchases, now=now
            )

            repo = MetricsRepository(session)
            for dto in results.values():
                await repo.upsert(dto)

        logger.debug(
            "Computed %d windows for %s (%d listings, %d purchases)",
            len(results),
            collection_id,
            len(listings),
            len(purchases),
        )
        return results
