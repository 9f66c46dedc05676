"""Read queries and resolution for alert history."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

from collection_monitor.errors import NotFoundError, ValidationError
from collection_monitor.storage.repos import AlertDTO, AlertRepository

if TYPE_CHECKING:
    from collection_monitor.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500
SORT_FIELDS = ("triggered_at", "severity", "type")

# Summary time windows; None means unbounded.
TIME_WINDOWS: dict[str, timedelta | None] = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "72h": timedelta(hours=72),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "all": None,
}
HOURLY_TREND_SPAN = timedelta(hours=24)
DAILY_TREND_SPAN = timedelta(days=7)


@dataclass(frozen=True)
class AlertFilters:
    """Filter, sort and page parameters for listing alerts.

    Raises:
        ValidationError: On an unknown sort field or order, or page/limit out of range.
    """

    collection_id: str | None = None
    severity: str | None = None
    alert_type: str | None = None
    resolved: bool | None = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    sort_by: str = "triggered_at"
    sort_order: Literal["asc", "desc"] = "desc"

    def __post_init__(self) -> None:
        if self.sort_by not in SORT_FIELDS:
            raise ValidationError(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
        if self.sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order must be asc or desc")
        if self.page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= self.limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def repository_filters(self) -> dict[str, Any]:
        return {
            "collection_id": self.collection_id,
            "severity": self.severity,
            "alert_type": self.alert_type,
            "resolved": self.resolved,
        }


@dataclass
class Pagination:
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "hasNext": self.has_next,
            "hasPrev": self.has_prev,
            "totalPages": self.total_pages,
        }


@dataclass
class AlertCounts:
    """Counts over every alert matching a filter, not just one page."""

    total: int = 0
    resolved: int = 0
    unresolved: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    by_collection: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "resolved": self.resolved,
            "unresolved": self.unresolved,
            "bySeverity": dict(self.by_severity),
            "byType": dict(self.by_type),
            "byCollection": dict(self.by_collection),
        }


@dataclass
class AlertPage:
    alerts: list[AlertDTO]
    pagination: Pagination
    summary: AlertCounts

    def to_dict(self) -> dict[str, Any]:
        return {
            "alerts": [a.to_dict() for a in self.alerts],
            "pagination": self.pagination.to_dict(),
            "summary": self.summary.to_dict(),
        }


class AlertReadService:
    """Dashboard-facing alert queries.

    Only ``resolve_alert`` writes, and it only touches ``resolved`` and
    ``resolved_at``.
    """

    def __init__(
        self, db: DatabaseManager, *, clock: Callable[[], datetime] | None = None
    ) -> None:
        self._db = db
        self._clock = clock or (lambda: datetime.now(UTC))

    async def list_alerts(self, filters: AlertFilters | None = None) -> AlertPage:
        """Return one page of alerts plus counts over the whole filtered set."""
        filters = filters or AlertFilters()
        where = filters.repository_filters()
        async with self._db.get_async_session() as session:
            repo = AlertRepository(session)
            alerts = await repo.find(
                **where,
                sort_by=filters.sort_by,
                sort_order=filters.sort_order,
                offset=filters.offset,
                limit=filters.limit,
            )
            summary = await self._counts(repo, where)

        return AlertPage(
            alerts=alerts,
            pagination=Pagination(total=summary.total, page=filters.page, limit=filters.limit),
            summary=summary,
        )

    @staticmethod
    async def _counts(repo: AlertRepository, where: dict[str, Any]) -> AlertCounts:
        by_severity = await repo.count_by("severity", **where)
        total = sum(by_severity.values())
        if where.get("resolved") is None:
            resolved = await repo.count(**{**where, "resolved": True})
        else:
            resolved = total if where["resolved"] else 0
        return AlertCounts(
            total=total,
            resolved=resolved,
            unresolved=total - resolved,
            by_severity=by_severity,
            by_type=await repo.count_by("type", **where),
            by_collection=await repo.count_by("collection", **where),
        )

    async def get_alert(self, alert_id: str) -> AlertDTO:
        """Raises NotFoundError for an unknown id."""
        async with self._db.get_async_session() as session:
            alert = await AlertRepository(session).get(alert_id)
        if alert is None:
            raise NotFoundError("alert", alert_id)
        return alert

    async def resolve_alert(self, alert_id: str) -> AlertDTO:
        """Mark an alert resolved. Resolving twice keeps the first timestamp.

        Raises:
            NotFoundError: If the alert does not exist.
        """
        async with self._db.get_async_session() as session:
            alert = await AlertRepository(session).resolve(alert_id, resolved_at=self._clock())
        if alert is None:
            raise NotFoundError("alert", alert_id)
        logger.info("Alert %s resolved", alert_id)
        return alert

    async def get_alerts_by_collection(
        self,
        collection_id: str,
        *,
        include_resolved: bool = False,
        limit: int = 100,
    ) -> dict[str, Any]:
        """Most recent alerts of one collection with a summary of those returned."""
        async with self._db.get_async_session() as session:
            alerts = await AlertRepository(session).find(
                collection_id=collection_id,
                resolved=None if include_resolved else False,
                limit=limit,
            )

        by_severity: dict[str, int] = {}
        by_type: dict[str, int] = {}
        for alert in alerts:
            by_severity[alert.severity] = by_severity.get(alert.severity, 0) + 1
            by_type[alert.alert_type] = by_type.get(alert.alert_type, 0) + 1
        resolved = sum(1 for a in alerts if a.resolved)

        return {
            "collectionId": collection_id,
            "alerts": [a.to_dict() for a in alerts],
            "summary": {
                "total": len(alerts),
                "resolved": resolved,
                "unresolved": len(alerts) - resolved,
                "bySeverity": by_severity,
                "byType": by_type,
                "latestAlert": alerts[0].to_dict() if alerts else None,
            },
        }

    async def get_alert_summary(
        self,
        time_window: str = "24h",
        *,
        collection_id: str | None = None,
        severity: str | None = None,
    ) -> dict[str, Any]:
        """Counts over a trailing time window plus hourly (24h) and daily (7d) trends.

        Unknown ``time_window`` values fall back to ``24h``.
        """
        if time_window not in TIME_WINDOWS:
            logger.debug("Unknown alert summary window %r, using 24h", time_window)
            time_window = "24h"
        now = self._clock()
        span = TIME_WINDOWS[time_window]
        since = now - span if span is not None else None
        where = {"collection_id": collection_id, "severity": severity, "since": since}

        trend_since = now - DAILY_TREND_SPAN
        if since is not None and since > trend_since:
            trend_since = since

        async with self._db.get_async_session() as session:
            repo = AlertRepository(session)
            counts = await self._counts(repo, where)
            recent = await repo.find(**{**where, "since": trend_since})

        hourly: dict[str, int] = {}
        daily: dict[str, int] = {}
        for alert in recent:
            age = now - alert.triggered_at
            if age <= HOURLY_TREND_SPAN:
                hour = alert.triggered_at.strftime("%Y-%m-%dT%H")
                hourly[hour] = hourly.get(hour, 0) + 1
            if age <= DAILY_TREND_SPAN:
                day = alert.triggered_at.strftime("%Y-%m-%d")
                daily[day] = daily.get(day, 0) + 1

        return {
            "timeWindow": time_window,
            **counts.to_dict(),
            "trends": {"hourly": hourly, "daily": daily},
        }
