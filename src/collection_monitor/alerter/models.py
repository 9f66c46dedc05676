"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class FormattedAlert:
    """An alert rendered once for every channel.

    Attributes:
        alert_id: Id of the persisted alert.
        collection_id: Collection the alert is about.
        alert_type: Rule name (``price_drop`` etc).
        severity: ``info`` | ``warning`` | ``critical``.
        title: Short one-line summary.
        payload: JSON body for webhook delivery.
        subject: Email subject line.
        body: Plain-text email body.
    """

    alert_id: str
    collection_id: str
    alert_type: str
    severity: str
    title: str
    payload: dict[str, Any] = field(default_factory=dict)
    subject: str = ""
    body: str = ""


@dataclass(frozen=True)
class ChannelResult:
    """Delivery outcome for one channel."""

    channel: str
    success: bool
    error: str | None = None


@dataclass
class DispatchResult:
    """Delivery outcome across all channels for one alert."""

    alert_id: str
    results: list[ChannelResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0
