"""Rolling-window metric calculations.

Everything in this module is a pure function of the events passed in, so a
window's metrics never drift from the events that are currently inside it.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

import numpy as np

from collection_monitor.storage.repos import ComputedMetricDTO


class MetricWindow(str, Enum):
    """Fixed trailing windows over which events are aggregated."""

    ONE_HOUR = "1h"
    SIX_HOURS = "6h"
    ONE_DAY = "24h"
    THREE_DAYS = "72h"

    @property
    def duration(self) -> timedelta:
        return _WINDOW_DURATIONS[self]

    @classmethod
    def parse(cls, value: str | MetricWindow) -> MetricWindow:
        """Return the window for ``"1h"``-style strings.

        Raises:
            ValueError: If the value is not one of the fixed windows.
        """
        if isinstance(value, MetricWindow):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(w.value for w in cls)
            raise ValueError(f"Unknown window {value!r}; expected one of {valid}") from None


_WINDOW_DURATIONS = {
    MetricWindow.ONE_HOUR: timedelta(hours=1),
    MetricWindow.SIX_HOURS: timedelta(hours=6),
    MetricWindow.ONE_DAY: timedelta(hours=24),
    MetricWindow.THREE_DAYS: timedelta(hours=72),
}

WIDEST_WINDOW = max(MetricWindow, key=lambda w: w.duration)


class PricedEvent(Protocol):
    """Anything with the fields the calculator reads."""

    @property
    def timestamp(self) -> datetime: ...

    @property
    def price(self) -> Decimal | None: ...

    @property
    def quantity(self) -> Decimal | None: ...

    @property
    def side(self) -> str | None: ...


@dataclass(frozen=True)
class WindowMetrics:
    """Aggregates over one set of events."""

    price_change: float | None = None
    average_price: float | None = None
    median_price: float | None = None
    trade_volume: float = 0.0
    buy_count: int = 0
    sell_count: int = 0
    liquidity_ratio: float | None = None
    event_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


EMPTY_METRICS = WindowMetrics()


def select_window(
    events: Iterable[PricedEvent], window: MetricWindow, now: datetime
) -> list[PricedEvent]:
    """Return events with ``now - window <= timestamp <= now``, in time order."""
    start = now - window.duration
    selected = [e for e in events if start <= e.timestamp <= now]
    selected.sort(key=lambda e: e.timestamp)
    return selected


def calculate_metrics(events: Sequence[PricedEvent]) -> WindowMetrics:
    """Aggregate a time-ordered sequence of events.

    ``price_change`` measures the rise from the first priced event to the
    highest price in the set. It is ``None`` when no event carries a price
    or the first price is zero.
    """
    if not events:
        return EMPTY_METRICS

    event_count = len(events)
    trade_volume = float(sum(float(e.quantity) for e in events if e.quantity is not None))
    buy_count = sum(1 for e in events if e.side == "buy")
    sell_count = sum(1 for e in events if e.side == "sell")

    price_change: float | None = None
    average_price: float | None = None
    median_price: float | None = None

    priced = [float(e.price) for e in events if e.price is not None]
    if priced:
        prices = np.asarray(priced, dtype=float)
        first = prices[0]
        if first != 0:
            price_change = float((prices.max() - first) / first * 100.0)
        average_price = float(prices.mean())
        median_price = float(np.median(prices))

    return WindowMetrics(
        price_change=price_change,
        average_price=average_price,
        median_price=median_price,
        trade_volume=trade_volume,
        buy_count=buy_count,
        sell_count=sell_count,
        liquidity_ratio=trade_volume / event_count,
        event_count=event_count,
    )


def compute_window(
    collection_id: str,
    window: MetricWindow,
    *,
    listings: Iterable[PricedEvent],
    purchases: Iterable[PricedEvent],
    now: datetime,
) -> ComputedMetricDTO:
    """Build the consolidated metrics row for one window.

    Listing-only and purchase-only aggregates are nested under the
    consolidated result. The 24h row also carries the two fields the alert
    rules read.
    """
    listing_events = select_window(listings, window, now)
    purchase_events = select_window(purchases, window, now)
    combined = sorted([*listing_events, *purchase_events], key=lambda e: e.timestamp)

    listing_metrics = calculate_metrics(listing_events)
    purchase_metrics = calculate_metrics(purchase_events)
    metrics = calculate_metrics(combined)

    price_change_24h: float | None = None
    volume_change_24h: float | None = None
    if window is MetricWindow.ONE_DAY:
        price_change_24h = metrics.price_change
        volume_change_24h = purchase_metrics.trade_volume

    return ComputedMetricDTO(
        collection_id=collection_id,
        window=window.value,
        timestamp=now,
        price_change=metrics.price_change,
        average_price=metrics.average_price,
        median_price=metrics.median_price,
        trade_volume=metrics.trade_volume,
        buy_count=metrics.buy_count,
        sell_count=metrics.sell_count,
        liquidity_ratio=metrics.liquidity_ratio,
        event_count=metrics.event_count,
        listing_metrics=listing_metrics.to_dict(),
        purchase_metrics=purchase_metrics.to_dict(),
        price_change_24h=price_change_24h,
        volume_change_24h=volume_change_24h,
    )


def compute_all_windows(
    collection_id: str,
    *,
    listings: Sequence[PricedEvent],
    purchases: Sequence[PricedEvent],
    now: datetime,
) -> dict[MetricWindow, ComputedMetricDTO]:
    """Compute every fixed window for one collection."""
    return {
        window: compute_window(
            collection_id, window, listings=listings, purchases=purchases, now=now
        )
        for window in MetricWindow
    }
