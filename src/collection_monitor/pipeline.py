"""Main pipeline orchestrator for the collection monitor.

This module provides the Pipeline class that wires together intake, the
metrics engine, alert evaluation, notification delivery and retention, and
runs the scheduled hourly jobs.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from collection_monitor.alerter.channels.email import EmailChannel
from collection_monitor.alerter.channels.webhook import WebhookChannel
from collection_monitor.alerter.dispatcher import AlertChannel, AlertDispatcher
from collection_monitor.analytics.engine import CollectionMetrics, MetricsEngine, RefreshLog, RefreshSummary
from collection_monitor.analytics.metrics import MetricWindow
from collection_monitor.config import Settings, get_settings
from collection_monitor.detector.cooldown import CooldownStore, InMemoryCooldownStore, RedisCooldownStore
from collection_monitor.detector.evaluator import AlertEvaluator
from collection_monitor.detector.models import AlertThresholds, ListingCounts
from collection_monitor.errors import AuthorizationError, MonitorError, PersistenceError, ValidationError
from collection_monitor.ingestor.dirty_set import DirtySet, InMemoryDirtySet, RedisDirtySet
from collection_monitor.ingestor.intake import EventIntake
from collection_monitor.ingestor.models import CollectionMetadata, IntakePayload
from collection_monitor.locks import KeyedLock
from collection_monitor.retention.sweeper import RetentionSweeper, SweepSummary
from collection_monitor.scheduling import HOURLY_REFRESH_MINUTE, seconds_until_next_run
from collection_monitor.services.alert_read import AlertReadService
from collection_monitor.services.analytics_read import AnalyticsReadService
from collection_monitor.storage.database import DatabaseManager
from collection_monitor.storage.repos import CollectionRepository, MetricsRepository, SnapshotRepository

if TYPE_CHECKING:
    from collection_monitor.ingestor.intake import IngestResult

logger = logging.getLogger(__name__)

_EVENT_FAILURE_TYPES = {"listing": "listing_event", "purchase": "purchase_event"}

# Scheduled jobs get this long to finish after stop is requested
STOP_GRACE_SECONDS = 5.0


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    records_ingested: int = 0
    records_rejected: int = 0
    refresh_cycles: int = 0
    alerts_triggered: int = 0
    sweeps: int = 0
    errors: int = 0
    last_error: str | None = None


@dataclass
class IngestSummary:
    """Outcome of one batch of intake payloads plus the refresh it triggered."""

    collections_updated: int = 0
    snapshots: int = 0
    listing_events: int = 0
    purchase_events: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0
    refresh: RefreshSummary | None = None

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "collectionsUpdated": self.collections_updated,
            "snapshots": self.snapshots,
            "listingEvents": self.listing_events,
            "purchaseEvents": self.purchase_events,
            "failures": list(self.failures),
            "durationMs": self.duration_ms,
            "metricsGenerated": self.refresh.metrics_generated if self.refresh else 0,
        }


@dataclass
class _CollectionBatch:
    metadata: dict[str, Any] = field(default_factory=dict)
    snapshots: list[Any] = field(default_factory=list)
    listing_events: list[Any] = field(default_factory=list)
    purchase_events: list[Any] = field(default_factory=list)


def _record_id(record: Any) -> Any:
    return record.get("id") if isinstance(record, dict) else None


class Pipeline:
    """Main pipeline orchestrator.

    Pipeline flow:
        Intake → Event Store (+ dirty set) → Metrics Engine → Alert Evaluator → Dispatcher

    The retention sweep runs on its own schedule and never touches
    collections or alerts.

    Example:
        ```python
        from collection_monitor.config import get_settings
        from collection_monitor.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            summary = await pipeline.ingest_payloads(payloads)
            print(summary.to_dict())
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        db: DatabaseManager | None = None,
        redis: Redis | None = None,
        channels: Sequence[AlertChannel] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, persist alerts but skip notifications.
                Overrides settings.dry_run.
            db: Pre-built database manager. The pipeline does not dispose it.
            redis: Pre-built Redis client for the redis state backend.
                The pipeline does not close it.
            channels: Alert channels to use instead of building them from settings.
            clock: Source of "now", for tests.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._clock = clock or (lambda: datetime.now(UTC))

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._db_manager = db
        self._owns_db = db is None
        self._redis = redis
        self._owns_redis = redis is None
        self._channels = list(channels) if channels is not None else None

        # Components (initialized in start())
        self._locks = KeyedLock()
        self._dirty_set: DirtySet | None = None
        self._cooldowns: CooldownStore | None = None
        self._dispatcher: AlertDispatcher | None = None
        self._evaluator: AlertEvaluator | None = None
        self._engine: MetricsEngine | None = None
        self._intake: EventIntake | None = None
        self._sweeper: RetentionSweeper | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def refresh_log(self) -> RefreshLog:
        """Outcome of the most recent metrics refresh."""
        return self._engine.refresh_log if self._engine else RefreshLog()

    @property
    def db(self) -> DatabaseManager:
        return self._require(self._db_manager, "database")

    @property
    def intake(self) -> EventIntake:
        return self._require(self._intake, "intake")

    @property
    def engine(self) -> MetricsEngine:
        return self._require(self._engine, "metrics engine")

    @property
    def evaluator(self) -> AlertEvaluator:
        return self._require(self._evaluator, "alert evaluator")

    @property
    def dispatcher(self) -> AlertDispatcher:
        return self._require(self._dispatcher, "alert dispatcher")

    @property
    def dirty_set(self) -> DirtySet:
        return self._require(self._dirty_set, "dirty set")

    @property
    def analytics(self) -> AnalyticsReadService:
        return AnalyticsReadService(self.db)

    @property
    def alerts(self) -> AlertReadService:
        return AlertReadService(self.db, clock=self._clock)

    def _require(self, component: Any, name: str) -> Any:
        if component is None:
            raise RuntimeError(f"Pipeline is not started ({name} unavailable)")
        return component

    async def start(self) -> None:
        """Start the pipeline.

        Initializes all components and, when enabled, the hourly refresh
        and cleanup jobs.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = self._clock()
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Stops scheduled jobs, waits for in-flight notifications and
        releases connections.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings
        settings.validate_requirements()

        if self._db_manager is None:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(
                settings.database.url,
                pool_size=settings.database.pool_size,
            )

        cooldown = timedelta(minutes=settings.alerts.cooldown_minutes)
        if settings.state_backend == "redis":
            if self._redis is None:
                logger.debug("Initializing Redis connection...")
                self._redis = Redis.from_url(settings.redis.url)  # type: ignore[arg-type]
            prefix = settings.redis.key_prefix
            self._dirty_set = RedisDirtySet(self._redis, key_prefix=prefix)
            self._cooldowns = RedisCooldownStore(self._redis, cooldown, key_prefix=prefix)
        else:
            self._dirty_set = InMemoryDirtySet()
            self._cooldowns = InMemoryCooldownStore(cooldown)

        logger.debug("Initializing alerting...")
        channels = self._channels if self._channels is not None else self._build_alert_channels()
        self._dispatcher = AlertDispatcher(channels)
        self._evaluator = AlertEvaluator(
            self._db_manager,
            self._cooldowns,
            thresholds=AlertThresholds(
                price_drop_percent=settings.alerts.price_drop_percent,
                volume_spike_percent=settings.alerts.volume_spike_percent,
                listing_depletion_percent=settings.alerts.listing_depletion_percent,
            ),
            dispatcher=self._dispatcher,
            dry_run=self._dry_run,
            clock=self._clock,
        )

        logger.debug("Initializing metrics engine...")
        self._engine = MetricsEngine(
            self._db_manager,
            max_workers=settings.max_refresh_workers,
            locks=self._locks,
            after_refresh=self._evaluate_collection,
            clock=self._clock,
        )
        self._intake = EventIntake(self._db_manager, self._dirty_set, locks=self._locks)
        self._sweeper = RetentionSweeper(
            self._db_manager,
            retention_hours=settings.retention.retention_hours,
            batch_size=settings.retention.batch_size,
            warning_threshold=settings.retention.warning_threshold,
            clock=self._clock,
        )

    def _build_alert_channels(self) -> list[AlertChannel]:
        """Build list of enabled alert channels."""
        channels: list[AlertChannel] = []
        settings = self._settings

        if settings.webhook.enabled and settings.webhook.url:
            channels.append(
                WebhookChannel(
                    settings.webhook.url.get_secret_value(),
                    max_retries=settings.webhook.max_retries,
                    backoff_seconds=settings.webhook.backoff_ms / 1000.0,
                    timeout_seconds=settings.webhook.timeout_seconds,
                )
            )
            logger.info("Webhook channel enabled")

        if settings.email.enabled and settings.email.recipients:
            password = settings.email.smtp_password
            channels.append(
                EmailChannel(
                    settings.email.recipients,
                    sender=settings.email.sender,
                    smtp_host=settings.email.smtp_host,
                    smtp_port=settings.email.smtp_port,
                    smtp_user=settings.email.smtp_user,
                    smtp_password=password.get_secret_value() if password else None,
                )
            )
            logger.info("Email channel enabled")

        if not channels:
            logger.warning("No alert channels configured")

        return channels

    async def _start_background_services(self) -> None:
        """Start the scheduled jobs that are switched on."""
        scheduler = self._settings.scheduler
        if scheduler.enable_hourly_refresh:
            logger.debug("Starting hourly refresh loop...")
            self._refresh_task = asyncio.create_task(
                self._run_scheduled_loop("hourly refresh", HOURLY_REFRESH_MINUTE, self._scheduled_refresh)
            )
        if scheduler.enable_cleanup:
            logger.debug("Starting cleanup loop...")
            self._cleanup_task = asyncio.create_task(
                self._run_scheduled_loop("cleanup", scheduler.cleanup_minute, self._scheduled_sweep)
            )

    async def _run_scheduled_loop(
        self, name: str, minute: int, job: Callable[[], Awaitable[Any]]
    ) -> None:
        if not self._stop_event:
            return

        while not self._stop_event.is_set():
            try:
                delay = seconds_until_next_run(self._clock(), minute)
                logger.info("Next %s run in %.0f seconds", name, delay)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break
                except TimeoutError:
                    pass

                await job()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("Scheduled %s failed: %s", name, e)

    async def _scheduled_refresh(self) -> None:
        started = time.monotonic()
        logger.info("Hourly refresh job started")
        summary = await self.refresh_all()
        duration_ms = int((time.monotonic() - started) * 1000)
        if summary.failures:
            logger.warning(
                "Hourly refresh job completed with %d failures in %dms",
                len(summary.failures),
                duration_ms,
            )
        else:
            logger.info("Hourly refresh job completed in %dms", duration_ms)

    async def _scheduled_sweep(self) -> None:
        await self.run_sweep()

    async def _stop_background_services(self) -> None:
        """Stop background services.

        The stop event is already set, so a running sweep stops between
        batches on its own. Tasks still busy after the grace period are
        cancelled.
        """
        if self._refresh_task:
            await self._stop_task(self._refresh_task, "hourly refresh")
            self._refresh_task = None

        if self._cleanup_task:
            await self._stop_task(self._cleanup_task, "cleanup")
            self._cleanup_task = None

    async def _stop_task(self, task: asyncio.Task[None], name: str) -> None:
        try:
            await asyncio.wait_for(task, timeout=STOP_GRACE_SECONDS)
        except TimeoutError:
            logger.warning("Scheduled %s did not finish within %.1fs; cancelled", name, STOP_GRACE_SECONDS)
        except asyncio.CancelledError:
            pass

    async def _cleanup(self) -> None:
        """Clean up resources."""
        # Finish in-flight notifications before closing their clients
        if self._dispatcher:
            await self._dispatcher.aclose()
            self._dispatcher = None

        if self._db_manager and self._owns_db:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis and self._owns_redis:
            await self._redis.aclose()
            self._redis = None

        self._intake = None
        self._engine = None
        self._evaluator = None
        self._sweeper = None
        logger.debug("Resources cleaned up")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _evaluate_collection(self, collection_id: str, metrics: CollectionMetrics) -> None:
        """Evaluate a freshly refreshed collection; runs under its lock."""
        metrics_24h = metrics.get(MetricWindow.ONE_DAY)
        async with self.db.get_async_session() as session:
            latest = await SnapshotRepository(session).get_latest(collection_id, limit=2)

        listing_counts = None
        if len(latest) == 2:
            listing_counts = ListingCounts(
                listing_count=latest[0].listed_count,
                previous_listing_count=latest[1].listed_count,
            )

        alerts = await self.evaluator.evaluate(
            collection_id,
            metrics_24h,
            listing_counts,
            now=metrics_24h.timestamp if metrics_24h else None,
        )
        self._stats.alerts_triggered += len(alerts)

    async def refresh(
        self, collection_ids: Iterable[str], *, now: datetime | None = None
    ) -> RefreshSummary:
        """Refresh metrics and evaluate alerts for the given collections.

        Collections that fail are put back on the dirty set so the next
        cycle retries them.
        """
        summary = await self.engine.refresh_with_summary(collection_ids, now=now)
        self._stats.refresh_cycles += 1
        for failure in summary.failures:
            self._stats.errors += 1
            await self.dirty_set.add(failure["collection_id"])
        return summary

    async def refresh_dirty(self, *, now: datetime | None = None) -> RefreshSummary:
        """Drain the dirty set and refresh those collections."""
        dirty = await self.dirty_set.drain()
        if not dirty:
            logger.debug("No dirty collections to refresh")
            return RefreshSummary()
        return await self.refresh(dirty, now=now)

    async def refresh_all(self, *, now: datetime | None = None) -> RefreshSummary:
        """Refresh every known collection.

        Windows slide with time even when no new events arrive, so the hourly
        job also recomputes collections that are not dirty.
        """
        ids = set(await self.dirty_set.drain())
        async with self.db.get_async_session() as session:
            ids.update(await CollectionRepository(session).list_ids())
            ids.update(await MetricsRepository(session).list_collection_ids())
        return await self.refresh(ids, now=now)

    async def ingest_payloads(
        self, payloads: Iterable[Any], *, now: datetime | None = None
    ) -> IngestSummary:
        """Ingest crawler payloads grouped per collection, then refresh.

        Every record is handled on its own; malformed or unstorable records
        are reported in ``failures`` and never abort the batch.
        """
        started = time.monotonic()
        summary = IngestSummary()
        batches: dict[str, _CollectionBatch] = {}

        payload_list = list(payloads)
        logger.info("Ingestion workflow started: %d payloads", len(payload_list))

        for raw in payload_list:
            try:
                payload = IntakePayload.from_dict(raw)
            except ValidationError as e:
                logger.warning("Skipping payload: %s", e)
                summary.failures.append({"type": "payload", "error": str(e)})
                continue
            batch = batches.setdefault(payload.collection_id, _CollectionBatch())
            if payload.metadata:
                batch.metadata = payload.metadata
            if payload.snapshot:
                batch.snapshots.append(payload.snapshot)
            batch.listing_events.extend(payload.listing_events)
            batch.purchase_events.extend(payload.purchase_events)

        for collection_id, batch in batches.items():
            try:
                await self._ingest_batch(collection_id, batch, summary)
                summary.collections_updated += 1
            except MonitorError as e:
                logger.error("Failed to process collection %s: %s", collection_id, e)
                summary.failures.append(
                    {"type": "collection", "collection_id": collection_id, "error": str(e)}
                )

        if batches:
            try:
                summary.refresh = await self.refresh_dirty(now=now)
            except Exception as e:
                logger.exception("Failed to refresh analytics metrics")
                summary.failures.append({"type": "analytics_refresh", "error": str(e)})
            else:
                summary.failures.extend(
                    {"type": "analytics_refresh", **failure} for failure in summary.refresh.failures
                )

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Ingestion workflow completed: collections=%d snapshots=%d listings=%d purchases=%d failures=%d duration=%dms",
            summary.collections_updated,
            summary.snapshots,
            summary.listing_events,
            summary.purchase_events,
            len(summary.failures),
            summary.duration_ms,
        )
        return summary

    async def _ingest_batch(
        self, collection_id: str, batch: _CollectionBatch, summary: IngestSummary
    ) -> None:
        if batch.metadata:
            metadata = CollectionMetadata.from_dict(batch.metadata, collection_id=collection_id)
            await self.intake.upsert_metadata(metadata)

        for snapshot in batch.snapshots:
            if await self._ingest_one(
                "snapshot",
                collection_id,
                snapshot,
                lambda s=snapshot: self.intake.ingest_snapshot(collection_id, s),
                summary,
            ):
                summary.snapshots += 1

        for kind, events in (("listing", batch.listing_events), ("purchase", batch.purchase_events)):
            for event in events:
                ok = await self._ingest_one(
                    _EVENT_FAILURE_TYPES[kind],
                    collection_id,
                    event,
                    lambda e=event, k=kind: self.intake.ingest(collection_id, e, kind=k),
                    summary,
                )
                if not ok:
                    continue
                if kind == "listing":
                    summary.listing_events += 1
                else:
                    summary.purchase_events += 1

    async def _ingest_one(
        self,
        failure_type: str,
        collection_id: str,
        record: Any,
        call: Callable[[], Awaitable[IngestResult]],
        summary: IngestSummary,
    ) -> bool:
        try:
            result = await call()
        except PersistenceError as e:
            error = str(e)
        else:
            if result.accepted:
                self._stats.records_ingested += 1
                return True
            error = result.reason or "rejected"

        self._stats.records_rejected += 1
        logger.error(
            "Failed to ingest %s for %s (id=%s): %s",
            failure_type,
            collection_id,
            _record_id(record),
            error,
        )
        summary.failures.append(
            {
                "type": failure_type,
                "collection_id": collection_id,
                "id": _record_id(record),
                "error": error,
            }
        )
        return False

    async def admin_refresh(
        self, payloads: Iterable[Any], api_key: str | None, *, now: datetime | None = None
    ) -> IngestSummary:
        """On-demand ingestion and refresh, guarded by the admin key.

        Raises:
            AuthorizationError: If no admin key is configured or ``api_key``
                does not match it.
        """
        expected = self._settings.admin_api_key
        if expected is None or not expected.get_secret_value():
            raise AuthorizationError("Admin API key is not configured")
        if not api_key or not secrets.compare_digest(
            api_key.encode(), expected.get_secret_value().encode()
        ):
            logger.warning("Rejected admin refresh with invalid API key")
            raise AuthorizationError("Invalid admin API key")

        logger.info("Admin refresh triggered")
        return await self.ingest_payloads(payloads, now=now)

    async def run_sweep(
        self,
        retention_hours: float | None = None,
        batch_size: int | None = None,
        *,
        now: datetime | None = None,
        warning_thresholds: dict[str, int] | None = None,
    ) -> SweepSummary:
        """Run one retention pass. Stopping the pipeline cancels it between batches."""
        sweeper = self._require(self._sweeper, "retention sweeper")
        try:
            result = await sweeper.sweep(
                retention_hours,
                batch_size,
                now=now,
                warning_thresholds=warning_thresholds,
                cancel_event=self._stop_event,
            )
        except PersistenceError as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            raise
        self._stats.sweeps += 1
        return result

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
