"""Webhook notification channel."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from collection_monitor.alerter.dispatcher import AlertChannel
from collection_monitor.alerter.models import FormattedAlert
from collection_monitor.errors import TransientDeliveryError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_TIMEOUT_SECONDS = 10.0


class WebhookChannel(AlertChannel):
    """POSTs the alert JSON payload to a URL with exponential backoff.

    The first attempt is followed by up to ``max_retries`` retries, waiting
    ``backoff_seconds * 2**attempt`` before each. After the last failure the
    channel logs and returns False; it never raises to the dispatcher.
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not url.startswith(("http://", "https://")):
            raise ValueError("Webhook URL must be an HTTP(S) endpoint")
        self._url = url
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._timeout = httpx.Timeout(timeout_seconds)
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def send(self, alert: FormattedAlert) -> bool:
        for attempt in range(self._max_retries + 1):
            try:
                await self._post(alert.payload)
            except TransientDeliveryError as e:
                if attempt == self._max_retries:
                    logger.error(
                        "Webhook delivery failed after %d attempts: alert=%s collection=%s error=%s",
                        attempt + 1,
                        alert.alert_id,
                        alert.collection_id,
                        e,
                    )
                    return False
                delay = self._backoff_seconds * (2**attempt)
                logger.warning(
                    "Webhook attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                    delay,
                )
                await self._sleep(delay)
            else:
                logger.info(
                    "Webhook notification sent: alert=%s collection=%s type=%s",
                    alert.alert_id,
                    alert.collection_id,
                    alert.alert_type,
                )
                return True
        return False

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = await self.client.post(self._url, json=payload, timeout=self._timeout)
        except httpx.HTTPError as e:
            raise TransientDeliveryError(f"{type(e).__name__}: {e}") from e
        if response.status_code >= 400:
            raise TransientDeliveryError(
                f"HTTP {response.status_code}", status_code=response.status_code
            )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
