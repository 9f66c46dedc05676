"""Alert evaluator: applies threshold rules and the cooldown gate."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from collection_monitor.detector.models import AlertThresholds, EvaluationContext, ListingCounts
from collection_monitor.detector.rules import DEFAULT_RULES, Rule
from collection_monitor.storage.repos import AlertDTO, AlertRepository, ComputedMetricDTO

if TYPE_CHECKING:
    from collection_monitor.alerter.dispatcher import AlertDispatcher
    from collection_monitor.detector.cooldown import CooldownStore
    from collection_monitor.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class AlertEvaluator:
    """Turns a collection's 24h metrics into persisted alerts.

    For every rule that fires, the cooldown entry is recorded first, then
    the alert is stored, then it is handed to the dispatcher in the
    background. A notification failure therefore never re-opens the
    cooldown, and a suppressed candidate leaves no trace at all.

    Args:
        db: Database manager used to persist alerts.
        cooldowns: Cooldown store shared by all evaluations.
        thresholds: Rule thresholds.
        dispatcher: Optional dispatcher; alerts are only stored when absent.
        dry_run: Persist alerts but never notify.
    """

    def __init__(
        self,
        db: DatabaseManager,
        cooldowns: CooldownStore,
        *,
        thresholds: AlertThresholds | None = None,
        dispatcher: AlertDispatcher | None = None,
        rules: Sequence[Rule] = DEFAULT_RULES,
        dry_run: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._cooldowns = cooldowns
        self._thresholds = thresholds or AlertThresholds()
        self._dispatcher = dispatcher
        self._rules = tuple(rules)
        self._dry_run = dry_run
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def thresholds(self) -> AlertThresholds:
        return self._thresholds

    async def evaluate(
        self,
        collection_id: str,
        metrics_24h: ComputedMetricDTO | None,
        listing_counts: ListingCounts | None = None,
        *,
        now: datetime | None = None,
    ) -> list[AlertDTO]:
        """Evaluate every rule once and return the alerts that were created."""
        evaluated_at = now or self._clock()
        ctx = EvaluationContext(
            collection_id=collection_id,
            price_change_24h=metrics_24h.price_change_24h if metrics_24h else None,
            volume_change_24h=metrics_24h.volume_change_24h if metrics_24h else None,
            listing_counts=listing_counts,
            evaluated_at=evaluated_at,
        )

        created: list[AlertDTO] = []
        for rule in self._rules:
            candidate = rule(ctx, self._thresholds)
            if candidate is None:
                continue

            alert_type = candidate.alert_type.value
            if not await self._cooldowns.try_acquire(collection_id, alert_type, evaluated_at):
                logger.debug("Alert %s for %s suppressed by cooldown", alert_type, collection_id)
                continue

            alert = AlertDTO(
                id=str(uuid.uuid4()),
                collection_id=collection_id,
                alert_type=alert_type,
                severity=candidate.severity.value,
                message=candidate.message,
                triggered_at=evaluated_at,
            )
            try:
                async with self._db.get_async_session() as session:
                    await AlertRepository(session).create(alert)
            except SQLAlchemyError as e:
                logger.error(
                    "Failed to persist %s alert for %s: %s", alert_type, collection_id, e
                )
                continue

            created.append(alert)
            logger.info(
                "Alert triggered: collection=%s type=%s severity=%s message=%s",
                collection_id,
                alert_type,
                alert.severity,
                alert.message,
            )

            if self._dry_run:
                logger.info("[DRY RUN] Would notify %s alert %s", alert_type, alert.id)
            elif self._dispatcher is not None:
                self._dispatcher.submit(alert)

        return created
