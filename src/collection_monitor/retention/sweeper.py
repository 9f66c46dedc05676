"""Retention sweeper: deletes rows older than the retention horizon."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from collection_monitor.errors import PersistenceError
from collection_monitor.storage.repos import RETENTION_MODELS, RetentionRepository, as_utc

if TYPE_CHECKING:
    from collection_monitor.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

RETAINED_TABLES: tuple[str, ...] = tuple(RETENTION_MODELS)
SKIPPED_TABLES: tuple[str, ...] = ("collections", "alerts")
MAX_BATCH_ITERATIONS = 1000


@dataclass
class SweepSummary:
    """Result of one sweep.

    Attributes:
        cutoff: Rows with a timestamp strictly before this were eligible.
        duration_ms: Wall time of the sweep.
        summary: Rows deleted per table.
        skipped: Tables never touched by retention.
        cancelled: True when the sweep stopped early on request.
    """

    cutoff: datetime
    duration_ms: int = 0
    summary: dict[str, int] = field(default_factory=dict)
    skipped: tuple[str, ...] = SKIPPED_TABLES
    cancelled: bool = False

    @property
    def total_deleted(self) -> int:
        return sum(self.summary.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "cutoff": self.cutoff.isoformat(),
            "durationMs": self.duration_ms,
            "summary": dict(self.summary),
            "skipped": list(self.skipped),
            "cancelled": self.cancelled,
        }


class RetentionSweeper:
    """Deletes expired rows table by table in bounded batches.

    Each batch commits in its own transaction so a long sweep never holds
    a lock on a whole table. ``collections`` and ``alerts`` are never
    swept.

    Example:
        ```python
        sweeper = RetentionSweeper(db, retention_hours=72, batch_size=500)
        result = await sweeper.sweep()
        print(result.summary)
        ```
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        retention_hours: float = 72,
        batch_size: int = 500,
        warning_threshold: int = 1000,
        warning_overrides: Mapping[str, int] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._retention_hours = retention_hours
        self._batch_size = batch_size
        self._warning_threshold = warning_threshold
        self._warning_overrides = dict(warning_overrides or {})
        self._clock = clock or (lambda: datetime.now(UTC))

    def _thresholds(self, overrides: Mapping[str, int] | None) -> dict[str, int]:
        thresholds = {table: self._warning_threshold for table in RETAINED_TABLES}
        for source in (self._warning_overrides, overrides or {}):
            for table, value in source.items():
                if value is not None and value >= 0:
                    thresholds[table] = value
        return thresholds

    async def sweep(
        self,
        retention_hours: float | None = None,
        batch_size: int | None = None,
        *,
        now: datetime | None = None,
        warning_thresholds: Mapping[str, int] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SweepSummary:
        """Run one retention pass over every retained table.

        Non-positive ``retention_hours`` or ``batch_size`` fall back to the
        configured values.

        Raises:
            PersistenceError: If a batch fails; ``partial`` holds the
                summary of what had been deleted up to that point.
        """
        hours = retention_hours if retention_hours and retention_hours > 0 else self._retention_hours
        size = batch_size if batch_size and batch_size > 0 else self._batch_size
        thresholds = self._thresholds(warning_thresholds)
        cutoff = as_utc(now or self._clock()) - timedelta(hours=hours)
        started = time.monotonic()

        result = SweepSummary(cutoff=cutoff)
        logger.info(
            "Data cleanup started: retention=%sh cutoff=%s batch_size=%d skipped=%s",
            hours,
            cutoff.isoformat(),
            size,
            ",".join(SKIPPED_TABLES),
        )

        for table in RETAINED_TABLES:
            result.summary[table] = 0
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break
            try:
                cancelled = await self._sweep_table(table, cutoff, size, result, cancel_event)
            except SQLAlchemyError as e:
                result.duration_ms = int((time.monotonic() - started) * 1000)
                logger.error("Cleanup failed on table %s: %s", table, e)
                raise PersistenceError(f"Cleanup failed on {table}: {e}", partial=result) from e

            deleted = result.summary[table]
            threshold = thresholds.get(table)
            if threshold is not None and deleted > threshold:
                logger.warning(
                    "Cleanup deletions exceeded threshold: table=%s deleted=%d threshold=%d",
                    table,
                    deleted,
                    threshold,
                )
            if cancelled:
                result.cancelled = True
                break

        result.duration_ms = int((time.monotonic() - started) * 1000)
        if result.cancelled:
            logger.warning("Data cleanup cancelled after deleting %d rows", result.total_deleted)
        else:
            logger.info(
                "Data cleanup completed in %dms: %s",
                result.duration_ms,
                ", ".join(f"{t}={n}" for t, n in result.summary.items()),
            )
        return result

    async def _sweep_table(
        self,
        table: str,
        cutoff: datetime,
        batch_size: int,
        result: SweepSummary,
        cancel_event: asyncio.Event | None,
    ) -> bool:
        """Delete batches from one table. Returns True if cancelled midway."""
        for iteration in range(1, MAX_BATCH_ITERATIONS + 1):
            async with self._db.get_async_session() as session:
                removed = await RetentionRepository(session).delete_expired_batch(
                    table, cutoff=cutoff, limit=batch_size
                )
            result.summary[table] += removed
            logger.debug("Cleanup batch %d on %s removed %d rows", iteration, table, removed)

            if removed < batch_size:
                return False
            if cancel_event is not None and cancel_event.is_set():
                return True

        logger.warning(
            "Cleanup batch iteration limit reached: table=%s batch_size=%d iterations=%d",
            table,
            batch_size,
            MAX_BATCH_ITERATIONS,
        )
        return False
