"""Data models for the ingestor module."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from collection_monitor.errors import ValidationError

EventKind = Literal["listing", "purchase"]
EVENT_KINDS: tuple[EventKind, ...] = ("listing", "purchase")

MAX_COLLECTION_ID_LENGTH = 64
MAX_EVENT_ID_LENGTH = 128

_EVENT_ID_KEYS = ("id", "eventId", "event_id", "sourceId", "source_id", "txHash", "tx_hash")
_TIMESTAMP_KEYS = ("timestamp", "eventTime", "event_time", "ts")


def parse_timestamp(value: Any, *, default: datetime | None = None) -> datetime:
    """Parse an aware UTC datetime from ISO strings, epoch numbers or datetimes.

    Epoch values above 1e12 are treated as milliseconds.

    Raises:
        ValidationError: If the value cannot be interpreted as a point in time.
    """
    if value is None or value == "":
        if default is None:
            raise ValidationError("timestamp is required")
        return default
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    if isinstance(value, bool):
        raise ValidationError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
        if seconds > 1e12:
            seconds /= 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise ValidationError(f"invalid timestamp: {value!r}") from e
    if isinstance(value, str):
        text = value.strip()
        try:
            return parse_timestamp(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"invalid timestamp: {value!r}") from e
        return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)
    raise ValidationError(f"invalid timestamp: {value!r}")


def parse_decimal(value: Any, *, name: str) -> Decimal | None:
    """Parse an optional finite decimal.

    Raises:
        ValidationError: If the value is present but not a finite number.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric, got {value!r}")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{name} must be numeric, got {value!r}") from e
    if not parsed.is_finite():
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return parsed


def _parse_int(value: Any, *, name: str) -> int | None:
    parsed = parse_decimal(value, name=name)
    return int(parsed) if parsed is not None else None


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def validate_collection_id(value: Any) -> str:
    """Return a normalized collection id.

    Raises:
        ValidationError: If the id is missing or too long.
    """
    if value is None:
        raise ValidationError("collection id is required")
    collection_id = str(value).strip()
    if not collection_id:
        raise ValidationError("collection id is required")
    if len(collection_id) > MAX_COLLECTION_ID_LENGTH:
        raise ValidationError(
            f"collection id exceeds {MAX_COLLECTION_ID_LENGTH} characters: {collection_id[:16]}..."
        )
    return collection_id


def json_safe(data: dict[str, Any]) -> dict[str, Any]:
    """Round-trip a payload through JSON so it can be stored in a JSON column."""
    result: dict[str, Any] = json.loads(json.dumps(data, default=str))
    return result


@dataclass(frozen=True)
class MarketEvent:
    """A listing or purchase observed on a marketplace.

    ``event_id`` may be ``None`` when the producer omitted it; the intake
    synthesizes one before storage.
    """

    collection_id: str
    kind: EventKind
    timestamp: datetime
    event_id: str | None = None
    side: Literal["buy", "sell"] | None = None
    price: Decimal | None = None
    quantity: Decimal | None = None
    seller: str | None = None
    buyer: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        kind: EventKind,
        collection_id: str | None = None,
        received_at: datetime | None = None,
    ) -> MarketEvent:
        """Create a MarketEvent from a producer payload.

        Raises:
            ValidationError: If the payload is malformed.
        """
        if not isinstance(data, dict):
            raise ValidationError(f"{kind} event must be an object, got {type(data).__name__}")
        if kind not in EVENT_KINDS:
            raise ValidationError(f"unknown event kind: {kind!r}")

        cid = validate_collection_id(
            collection_id or _first(data, "collectionId", "collection_id")
        )

        kind_id_key = "listingId" if kind == "listing" else "purchaseId"
        raw_id = _first(data, *_EVENT_ID_KEYS, kind_id_key)
        event_id = str(raw_id).strip() if raw_id is not None else None
        if event_id is not None and len(event_id) > MAX_EVENT_ID_LENGTH:
            raise ValidationError(f"event id exceeds {MAX_EVENT_ID_LENGTH} characters")

        side_raw = _first(data, "side", "type")
        side_norm = str(side_raw).strip().lower() if side_raw is not None else None
        side: Literal["buy", "sell"] | None
        if side_norm == "buy":
            side = "buy"
        elif side_norm == "sell":
            side = "sell"
        else:
            side = None

        seller = _first(data, "seller", "sellerAddress", "seller_address")
        buyer = _first(data, "buyer", "buyerAddress", "buyer_address")

        return cls(
            collection_id=cid,
            kind=kind,
            timestamp=parse_timestamp(
                _first(data, *_TIMESTAMP_KEYS),
                default=received_at or datetime.now(UTC),
            ),
            event_id=event_id or None,
            side=side,
            price=parse_decimal(data.get("price"), name="price"),
            quantity=parse_decimal(_first(data, "quantity", "amount"), name="quantity"),
            seller=str(seller) if seller is not None else None,
            buyer=str(buyer) if buyer is not None else None,
            raw=json_safe(data),
        )


@dataclass(frozen=True)
class MarketSnapshot:
    """Periodic marketplace snapshot of a collection."""

    collection_id: str
    timestamp: datetime
    snapshot_id: str | None = None
    floor_price: Decimal | None = None
    ceiling_price: Decimal | None = None
    volume: Decimal | None = None
    listed_count: int | None = None
    sales_24h: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        collection_id: str | None = None,
        received_at: datetime | None = None,
    ) -> MarketSnapshot:
        """Create a MarketSnapshot from a producer payload.

        Raises:
            ValidationError: If the payload is malformed.
        """
        if not isinstance(data, dict):
            raise ValidationError(f"snapshot must be an object, got {type(data).__name__}")

        cid = validate_collection_id(
            collection_id or _first(data, "collectionId", "collection_id")
        )
        raw_id = _first(data, "id", "snapshotId", "snapshot_id")

        return cls(
            collection_id=cid,
            timestamp=parse_timestamp(
                _first(data, "timestamp", "snapshotTime", "capturedAt", "ts"),
                default=received_at or datetime.now(UTC),
            ),
            snapshot_id=str(raw_id).strip() if raw_id is not None else None,
            floor_price=parse_decimal(_first(data, "floorPrice", "floor_price"), name="floorPrice"),
            ceiling_price=parse_decimal(
                _first(data, "ceilingPrice", "ceiling_price"), name="ceilingPrice"
            ),
            volume=parse_decimal(_first(data, "volume", "volume24h", "volume_24h"), name="volume"),
            listed_count=_parse_int(_first(data, "listedCount", "listed_count"), name="listedCount"),
            sales_24h=_parse_int(_first(data, "sales24h", "sales_24h"), name="sales24h"),
            raw=json_safe(data),
        )


@dataclass(frozen=True)
class CollectionMetadata:
    """Descriptive metadata for a tracked collection."""

    collection_id: str
    name: str | None = None
    slug: str | None = None
    source: str | None = None
    extra: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, collection_id: str) -> CollectionMetadata:
        if not isinstance(data, dict):
            raise ValidationError(f"metadata must be an object, got {type(data).__name__}")
        known = {"name", "slug", "source", "marketplace"}
        extra = {k: v for k, v in data.items() if k not in known}
        name = data.get("name")
        slug = data.get("slug")
        source = _first(data, "source", "marketplace")
        return cls(
            collection_id=collection_id,
            name=str(name) if name is not None else None,
            slug=str(slug) if slug is not None else None,
            source=str(source) if source is not None else None,
            extra=json_safe(extra) if extra else None,
        )


@dataclass(frozen=True)
class IntakePayload:
    """One collection's worth of crawler output.

    Event and snapshot entries stay raw here so each record can be
    validated and reported individually during ingestion.
    """

    collection_id: str
    metadata: dict[str, Any] | None = None
    snapshot: dict[str, Any] | None = None
    listing_events: tuple[dict[str, Any], ...] = ()
    purchase_events: tuple[dict[str, Any], ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IntakePayload:
        """Create an IntakePayload from ``{collectionId, metadata?, snapshot?, listingEvents?, purchaseEvents?}``.

        Raises:
            ValidationError: If the payload has no collection id or wrong shapes.
        """
        if not isinstance(data, dict):
            raise ValidationError(f"payload must be an object, got {type(data).__name__}")
        cid = validate_collection_id(_first(data, "collectionId", "collection_id"))

        def _events(key: str, alt: str) -> tuple[dict[str, Any], ...]:
            items = data.get(key, data.get(alt)) or []
            if not isinstance(items, list):
                raise ValidationError(f"{key} must be a list")
            return tuple(items)

        metadata = data.get("metadata")
        snapshot = data.get("snapshot")
        return cls(
            collection_id=cid,
            metadata=metadata if isinstance(metadata, dict) else None,
            snapshot=snapshot if isinstance(snapshot, dict) else None,
            listing_events=_events("listingEvents", "listing_events"),
            purchase_events=_events("purchaseEvents", "purchase_events"),
        )
