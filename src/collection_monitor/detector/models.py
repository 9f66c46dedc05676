"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class AlertType(str, Enum):
    PRICE_DROP = "price_drop"
    VOLUME_SPIKE = "volume_spike"
    LISTING_DEPLETION = "listing_depletion"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ListingCounts:
    """Current and previous listed counts, from the two latest snapshots."""

    listing_count: int | None
    previous_listing_count: int | None

    @property
    def depletion_percent(self) -> float | None:
        """Percentage drop from previous to current, or None without a usable baseline."""
        if self.listing_count is None or self.previous_listing_count is None:
            return None
        if self.previous_listing_count <= 0:
            return None
        return (
            (self.previous_listing_count - self.listing_count)
            / self.previous_listing_count
            * 100.0
        )


@dataclass(frozen=True)
class AlertCandidate:
    """A threshold breach before the cooldown gate.

    Attributes:
        collection_id: Collection that breached.
        alert_type: Rule that fired.
        severity: Fixed severity of the rule.
        message: Human-readable description.
        observed: The metric value that crossed the threshold.
        threshold: The configured threshold.
    """

    collection_id: str
    alert_type: AlertType
    severity: Severity
    message: str
    observed: float
    threshold: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection_id": self.collection_id,
            "type": self.alert_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "observed": self.observed,
            "threshold": self.threshold,
        }


@dataclass(frozen=True)
class AlertThresholds:
    """Configured rule thresholds, in percent."""

    price_drop_percent: float = 10.0
    volume_spike_percent: float = 50.0
    listing_depletion_percent: float = 30.0


@dataclass(frozen=True)
class EvaluationContext:
    """Inputs of one evaluation cycle for one collection."""

    collection_id: str
    price_change_24h: float | None
    volume_change_24h: float | None
    listing_counts: ListingCounts | None
    evaluated_at: datetime
