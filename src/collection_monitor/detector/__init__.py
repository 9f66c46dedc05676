"""Alert detection layer - Threshold rules and cooldown gating."""

from collection_monitor.detector.cooldown import (
    CooldownStore,
    InMemoryCooldownStore,
    RedisCooldownStore,
)
from collection_monitor.detector.evaluator import AlertEvaluator
from collection_monitor.detector.models import (
    AlertCandidate,
    AlertThresholds,
    AlertType,
    ListingCounts,
    Severity,
)

__all__ = [
    "AlertCandidate",
    "AlertEvaluator",
    "AlertThresholds",
    "AlertType",
    "CooldownStore",
    "InMemoryCooldownStore",
    "ListingCounts",
    "RedisCooldownStore",
    "Severity",
]
