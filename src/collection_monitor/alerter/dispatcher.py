"""Alert dispatcher: concurrent, isolated delivery to every channel."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING

from collection_monitor.alerter.formatter import AlertFormatter
from collection_monitor.alerter.models import ChannelResult, DispatchResult, FormattedAlert

if TYPE_CHECKING:
    from collection_monitor.storage.repos import AlertDTO

logger = logging.getLogger(__name__)


class AlertChannel(ABC):
    """A notification destination.

    ``send`` returns False (or raises) on failure. Retrying is the channel's
    own business; the dispatcher calls ``send`` exactly once per alert.
    """

    name: str = "channel"

    @abstractmethod
    async def send(self, alert: FormattedAlert) -> bool:
        """Deliver one alert."""

    async def aclose(self) -> None:
        """Release channel resources."""


class AlertDispatcher:
    """Delivers alerts to all channels concurrently.

    One channel failing, raising, or sleeping through its backoff never
    delays or prevents delivery on the others.

    Example:
        ```python
        dispatcher = AlertDispatcher([WebhookChannel(url)])
        dispatcher.submit(alert)  # returns immediately
        await dispatcher.drain()  # wait for in-flight deliveries
        ```
    """

    def __init__(
        self,
        channels: Sequence[AlertChannel],
        *,
        formatter: AlertFormatter | None = None,
    ) -> None:
        self._channels = list(channels)
        self._formatter = formatter or AlertFormatter()
        self._pending: set[asyncio.Task[DispatchResult]] = set()
        self.delivered = 0
        self.failed = 0

    @property
    def channels(self) -> list[AlertChannel]:
        return list(self._channels)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def dispatch(self, alert: AlertDTO) -> DispatchResult:
        """Send one alert to every channel and wait for all outcomes."""
        formatted = self._formatter.format(alert)
        result = DispatchResult(alert_id=alert.id)
        if not self._channels:
            logger.debug("No alert channels configured; alert %s not delivered", alert.id)
            return result

        outcomes = await asyncio.gather(*(self._send(ch, formatted) for ch in self._channels))
        result.results.extend(outcomes)

        self.delivered += result.success_count
        self.failed += result.failure_count
        if result.all_succeeded:
            logger.info(
                "Alert %s delivered to %d channel(s)", alert.id, result.success_count
            )
        else:
            logger.warning(
                "Alert %s partially failed: %d/%d channels succeeded",
                alert.id,
                result.success_count,
                result.success_count + result.failure_count,
            )
        return result

    def submit(self, alert: AlertDTO) -> asyncio.Task[DispatchResult]:
        """Schedule delivery in the background and return immediately."""
        task = asyncio.create_task(self.dispatch(alert), name=f"dispatch-{alert.id}")
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[DispatchResult]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background dispatch failed: %s", exc)

    async def drain(self) -> None:
        """Wait for every in-flight background delivery."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Finish in-flight deliveries and close all channels."""
        await self.drain()
        for channel in self._channels:
            await channel.aclose()

    async def _send(self, channel: AlertChannel, alert: FormattedAlert) -> ChannelResult:
        try:
            ok = await channel.send(alert)
        except Exception as e:
            logger.error("Channel %s raised while sending alert %s: %s", channel.name, alert.alert_id, e)
            return ChannelResult(channel=channel.name, success=False, error=str(e))
        if not ok:
            return ChannelResult(channel=channel.name, success=False, error="delivery failed")
        return ChannelResult(channel=channel.name, success=True)
