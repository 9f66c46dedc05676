"""Tests for threshold rules."""

from datetime import UTC, datetime

import pytest

from collection_monitor.detector.models import (
    AlertThresholds,
    AlertType,
    EvaluationContext,
    ListingCounts,
    Severity,
)
from collection_monitor.detector.rules import (
    listing_depletion_rule,
    price_drop_rule,
    volume_spike_rule,
)

THRESHOLDS = AlertThresholds(
    price_drop_percent=10.0, volume_spike_percent=50.0, listing_depletion_percent=30.0
)


def ctx(price=None, volume=None, counts=None) -> EvaluationContext:
    return EvaluationContext(
        collection_id="col-1",
        price_change_24h=price,
        volume_change_24h=volume,
        listing_counts=counts,
        evaluated_at=datetime(2026, 10, 19, 12, 0, tzinfo=UTC),
    )


class TestListingCounts:
    """Tests for depletion percentage."""

    def test_depletion(self) -> None:
        assert ListingCounts(50, 100).depletion_percent == pytest.approx(50.0)

    def test_growth_is_negative(self) -> None:
        assert ListingCounts(150, 100).depletion_percent == pytest.approx(-50.0)

    @pytest.mark.parametrize("current,previous", [(None, 100), (10, None), (10, 0)])
    def test_no_baseline(self, current, previous) -> None:
        assert ListingCounts(current, previous).depletion_percent is None


class TestPriceDropRule:
    """Tests for price_drop."""

    def test_fires_below_threshold(self) -> None:
        candidate = price_drop_rule(ctx(price=-15.0), THRESHOLDS)
        assert candidate is not None
        assert candidate.alert_type is AlertType.PRICE_DROP
        assert candidate.severity is Severity.WARNING
        assert candidate.message == "Price dropped 15.00% in 24h"

    @pytest.mark.parametrize("price", [-10.0, -5.0, 0.0, 20.0, None])
    def test_silent(self, price) -> None:
        assert price_drop_rule(ctx(price=price), THRESHOLDS) is None


class TestVolumeSpikeRule:
    """Tests for volume_spike."""

    def test_fires_above_threshold(self) -> None:
        candidate = volume_spike_rule(ctx(volume=75.5), THRESHOLDS)
        assert candidate is not None
        assert candidate.severity is Severity.INFO
        assert candidate.message == "Volume spiked 75.50% in 24h"

    @pytest.mark.parametrize("volume", [50.0, 0.0, None])
    def test_silent(self, volume) -> None:
        assert volume_spike_rule(ctx(volume=volume), THRESHOLDS) is None


class TestListingDepletionRule:
    """Tests for listing_depletion."""

    def test_fires_above_threshold(self) -> None:
        candidate = listing_depletion_rule(ctx(counts=ListingCounts(60, 100)), THRESHOLDS)
        assert candidate is not None
        assert candidate.severity is Severity.CRITICAL
        assert candidate.message == "Listings depleted by 40.00%"
        assert candidate.observed == pytest.approx(40.0)

    def test_exact_threshold_is_silent(self) -> None:
        assert listing_depletion_rule(ctx(counts=ListingCounts(70, 100)), THRESHOLDS) is None

    def test_without_counts(self) -> None:
        assert listing_depletion_rule(ctx(), THRESHOLDS) is None

    def test_zero_previous(self) -> None:
        assert listing_depletion_rule(ctx(counts=ListingCounts(0, 0)), THRESHOLDS) is None


def test_candidate_to_dict() -> None:
    candidate = price_drop_rule(ctx(price=-20.0), THRESHOLDS)
    assert candidate is not None
    data = candidate.to_dict()
    assert data["type"] == "price_drop"
    assert data["severity"] == "warning"
    assert data["threshold"] == 10.0
