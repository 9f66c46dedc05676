"""Tests for ingestor data models."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from collection_monitor.errors import ValidationError
from collection_monitor.ingestor.models import (
    CollectionMetadata,
    IntakePayload,
    MarketEvent,
    MarketSnapshot,
    parse_decimal,
    parse_timestamp,
    validate_collection_id,
)

RECEIVED = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_iso_with_z(self) -> None:
        assert parse_timestamp("2026-10-19T11:30:00Z") == datetime(2026, 10, 19, 11, 30, tzinfo=UTC)

    def test_naive_iso_is_utc(self) -> None:
        assert parse_timestamp("2026-10-19T11:30:00").tzinfo == UTC

    def test_epoch_seconds_and_millis(self) -> None:
        seconds = parse_timestamp(1_760_000_000)
        millis = parse_timestamp(1_760_000_000_000)
        assert seconds == millis

    def test_numeric_string(self) -> None:
        assert parse_timestamp("1760000000") == parse_timestamp(1_760_000_000)

    def test_missing_uses_default(self) -> None:
        assert parse_timestamp(None, default=RECEIVED) == RECEIVED

    def test_missing_without_default(self) -> None:
        with pytest.raises(ValidationError):
            parse_timestamp(None)

    @pytest.mark.parametrize("value", ["yesterday", True, [1]])
    def test_invalid(self, value) -> None:
        with pytest.raises(ValidationError):
            parse_timestamp(value)


class TestParseDecimal:
    """Tests for parse_decimal."""

    def test_numeric_string(self) -> None:
        assert parse_decimal("1.25", name="price") == Decimal("1.25")

    def test_empty_is_none(self) -> None:
        assert parse_decimal("", name="price") is None

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", False])
    def test_rejects_non_finite(self, value) -> None:
        with pytest.raises(ValidationError):
            parse_decimal(value, name="price")


class TestCollectionId:
    """Tests for collection id validation."""

    def test_strips_whitespace(self) -> None:
        assert validate_collection_id("  col-1 ") == "col-1"

    @pytest.mark.parametrize("value", [None, "", "   ", "x" * 65])
    def test_invalid(self, value) -> None:
        with pytest.raises(ValidationError):
            validate_collection_id(value)


class TestMarketEvent:
    """Tests for MarketEvent.from_dict."""

    def test_full_payload(self) -> None:
        event = MarketEvent.from_dict(
            {
                "id": "evt-1",
                "timestamp": "2026-10-19T11:00:00Z",
                "side": "BUY",
                "price": "1.5",
                "quantity": 2,
                "buyer": "0xabc",
            },
            kind="purchase",
            collection_id="col-1",
        )
        assert event.event_id == "evt-1"
        assert event.side == "buy"
        assert event.price == Decimal("1.5")
        assert event.quantity == Decimal("2")
        assert event.buyer == "0xabc"
        assert event.raw["id"] == "evt-1"

    def test_alternate_keys(self) -> None:
        event = MarketEvent.from_dict(
            {"collectionId": "col-1", "listingId": "L-9", "eventTime": 1_760_000_000, "amount": "3"},
            kind="listing",
        )
        assert event.collection_id == "col-1"
        assert event.event_id == "L-9"
        assert event.quantity == Decimal("3")

    def test_missing_id_and_time(self) -> None:
        event = MarketEvent.from_dict(
            {"price": 1}, kind="listing", collection_id="col-1", received_at=RECEIVED
        )
        assert event.event_id is None
        assert event.timestamp == RECEIVED

    def test_unknown_side_is_none(self) -> None:
        event = MarketEvent.from_dict({"side": "transfer"}, kind="listing", collection_id="col-1")
        assert event.side is None

    def test_rejects_bad_price(self) -> None:
        with pytest.raises(ValidationError):
            MarketEvent.from_dict({"price": "cheap"}, kind="listing", collection_id="col-1")

    def test_rejects_missing_collection(self) -> None:
        with pytest.raises(ValidationError):
            MarketEvent.from_dict({"id": "e"}, kind="listing")

    def test_rejects_non_object(self) -> None:
        with pytest.raises(ValidationError):
            MarketEvent.from_dict(["x"], kind="listing", collection_id="col-1")  # type: ignore[arg-type]


class TestMarketSnapshot:
    """Tests for MarketSnapshot.from_dict."""

    def test_parses_counts(self) -> None:
        snapshot = MarketSnapshot.from_dict(
            {"snapshotId": "s1", "floorPrice": "0.8", "listedCount": "42", "sales24h": 7},
            collection_id="col-1",
            received_at=RECEIVED,
        )
        assert snapshot.snapshot_id == "s1"
        assert snapshot.floor_price == Decimal("0.8")
        assert snapshot.listed_count == 42
        assert snapshot.sales_24h == 7
        assert snapshot.timestamp == RECEIVED


class TestCollectionMetadata:
    """Tests for CollectionMetadata.from_dict."""

    def test_unknown_keys_go_to_extra(self) -> None:
        metadata = CollectionMetadata.from_dict(
            {"name": "Azuki", "marketplace": "opensea", "chain": "eth"}, collection_id="col-1"
        )
        assert metadata.name == "Azuki"
        assert metadata.source == "opensea"
        assert metadata.extra == {"chain": "eth"}

    def test_no_extra(self) -> None:
        metadata = CollectionMetadata.from_dict({"name": "Azuki"}, collection_id="col-1")
        assert metadata.extra is None


class TestIntakePayload:
    """Tests for IntakePayload.from_dict."""

    def test_camel_case_payload(self) -> None:
        payload = IntakePayload.from_dict(
            {
                "collectionId": "col-1",
                "metadata": {"name": "Azuki"},
                "snapshot": {"listedCount": 10},
                "listingEvents": [{"id": "l1"}],
                "purchaseEvents": [{"id": "p1"}, {"id": "p2"}],
            }
        )
        assert payload.collection_id == "col-1"
        assert payload.metadata == {"name": "Azuki"}
        assert len(payload.listing_events) == 1
        assert len(payload.purchase_events) == 2

    def test_defaults(self) -> None:
        payload = IntakePayload.from_dict({"collection_id": "col-1"})
        assert payload.snapshot is None
        assert payload.listing_events == ()

    def test_rejects_events_not_list(self) -> None:
        with pytest.raises(ValidationError):
            IntakePayload.from_dict({"collectionId": "col-1", "listingEvents": {"id": "l1"}})

    def test_rejects_missing_collection(self) -> None:
        with pytest.raises(ValidationError):
            IntakePayload.from_dict({"listingEvents": []})
