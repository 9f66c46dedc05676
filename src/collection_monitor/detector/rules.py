"""Threshold rules evaluated against the 24h metrics row.

Each rule is independent and yields at most one candidate per cycle.
Missing inputs (``None``) are "no signal" and never fire; zero is a real
value and is compared normally.
"""

from __future__ import annotations

from collections.abc import Callable

from collection_monitor.detector.models import (
    AlertCandidate,
    AlertThresholds,
    AlertType,
    EvaluationContext,
    Severity,
)

Rule = Callable[[EvaluationContext, AlertThresholds], AlertCandidate | None]


def price_drop_rule(ctx: EvaluationContext, thresholds: AlertThresholds) -> AlertCandidate | None:
    change = ctx.price_change_24h
    if change is None or not change < -thresholds.price_drop_percent:
        return None
    return AlertCandidate(
        collection_id=ctx.collection_id,
        alert_type=AlertType.PRICE_DROP,
        severity=Severity.WARNING,
        message=f"Price dropped {abs(change):.2f}% in 24h",
        observed=change,
        threshold=thresholds.price_drop_percent,
    )


def volume_spike_rule(ctx: EvaluationContext, thresholds: AlertThresholds) -> AlertCandidate | None:
    volume = ctx.volume_change_24h
    if volume is None or not volume > thresholds.volume_spike_percent:
        return None
    return AlertCandidate(
        collection_id=ctx.collection_id,
        alert_type=AlertType.VOLUME_SPIKE,
        severity=Severity.INFO,
        message=f"Volume spiked {volume:.2f}% in 24h",
        observed=volume,
        threshold=thresholds.volume_spike_percent,
    )


def listing_depletion_rule(
    ctx: EvaluationContext, thresholds: AlertThresholds
) -> AlertCandidate | None:
    if ctx.listing_counts is None:
        return None
    depletion = ctx.listing_counts.depletion_percent
    if depletion is None or not depletion > thresholds.listing_depletion_percent:
        return None
    return AlertCandidate(
        collection_id=ctx.collection_id,
        alert_type=AlertType.LISTING_DEPLETION,
        severity=Severity.CRITICAL,
        message=f"Listings depleted by {depletion:.2f}%",
        observed=depletion,
        threshold=thresholds.listing_depletion_percent,
    )


DEFAULT_RULES: tuple[Rule, ...] = (price_drop_rule, volume_spike_rule, listing_depletion_rule)
