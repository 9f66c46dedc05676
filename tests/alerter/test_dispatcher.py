"""Tests for the alert dispatcher."""

import asyncio
from datetime import UTC, datetime

import httpx
import pytest

from collection_monitor.alerter.channels.email import EmailChannel
from collection_monitor.alerter.channels.webhook import WebhookChannel
from collection_monitor.alerter.dispatcher import AlertChannel, AlertDispatcher
from collection_monitor.alerter.models import FormattedAlert
from collection_monitor.storage.repos import AlertDTO


class RecordingChannel(AlertChannel):
    """Channel that records what it was asked to send."""

    def __init__(self, name: str, *, result: bool = True, error: Exception | None = None, delay: float = 0.0):
        self.name = name
        self._result = result
        self._error = error
        self._delay = delay
        self.sent: list[FormattedAlert] = []
        self.closed = False

    async def send(self, alert: FormattedAlert) -> bool:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        self.sent.append(alert)
        return self._result

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def alert() -> AlertDTO:
    return AlertDTO(
        id="alert-1",
        collection_id="col-1",
        alert_type="volume_spike",
        severity="info",
        message="Volume spiked 80.00% in 24h",
        triggered_at=datetime(2026, 10, 19, 12, 0, tzinfo=UTC),
    )


class TestDispatch:
    """Tests for AlertDispatcher.dispatch."""

    async def test_all_channels_succeed(self, alert) -> None:
        webhook = RecordingChannel("webhook")
        email = RecordingChannel("email")
        dispatcher = AlertDispatcher([webhook, email])

        result = await dispatcher.dispatch(alert)

        assert result.all_succeeded
        assert result.success_count == 2
        assert webhook.sent[0].payload["type"] == "volume_spike"
        assert email.sent[0].subject == "Alert - volume_spike"

    async def test_failing_channel_does_not_block_others(self, alert) -> None:
        webhook = RecordingChannel("webhook", result=False)
        email = RecordingChannel("email")
        dispatcher = AlertDispatcher([webhook, email])

        result = await dispatcher.dispatch(alert)

        assert result.success_count == 1
        assert result.failure_count == 1
        assert len(email.sent) == 1
        assert dispatcher.delivered == 1
        assert dispatcher.failed == 1

    async def test_raising_channel_is_isolated(self, alert) -> None:
        broken = RecordingChannel("webhook", error=RuntimeError("connection reset"))
        email = RecordingChannel("email")

        result = await AlertDispatcher([broken, email]).dispatch(alert)

        failed = next(r for r in result.results if not r.success)
        assert failed.channel == "webhook"
        assert failed.error == "connection reset"
        assert len(email.sent) == 1

    async def test_no_channels(self, alert) -> None:
        result = await AlertDispatcher([]).dispatch(alert)
        assert result.results == []


class TestSubmit:
    """Tests for background delivery."""

    async def test_submit_returns_before_delivery(self, alert) -> None:
        slow = RecordingChannel("webhook", delay=0.05)
        dispatcher = AlertDispatcher([slow])

        dispatcher.submit(alert)
        assert dispatcher.pending_count == 1
        assert slow.sent == []

        await dispatcher.drain()
        assert len(slow.sent) == 1
        assert dispatcher.pending_count == 0

    async def test_aclose_drains_and_closes(self, alert) -> None:
        channel = RecordingChannel("email", delay=0.01)
        dispatcher = AlertDispatcher([channel])
        dispatcher.submit(alert)

        await dispatcher.aclose()

        assert len(channel.sent) == 1
        assert channel.closed is True


# ============================================================================
# Real channels
# ============================================================================


class StubSMTP:
    """Accepts every message without opening a connection."""

    sent: list[tuple] = []

    def __init__(self, host, port, timeout=None) -> None:
        self.host = host

    def __enter__(self) -> "StubSMTP":
        return self

    def __exit__(self, *args) -> None:
        pass

    def starttls(self) -> None:
        pass

    def login(self, user, password) -> None:
        pass

    def sendmail(self, sender, recipients, message) -> None:
        StubSMTP.sent.append((sender, recipients, message))


class TestChannelIsolation:
    """Webhook exhaustion alongside a working email channel."""

    async def test_email_succeeds_when_webhook_exhausts_retries(self, alert) -> None:
        StubSMTP.sent.clear()
        attempts = 0

        def always_down(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return httpx.Response(503)

        async def no_sleep(delay: float) -> None:
            return None

        webhook = WebhookChannel(
            "https://hooks.example.com/alerts",
            max_retries=3,
            client=httpx.AsyncClient(transport=httpx.MockTransport(always_down)),
            sleep=no_sleep,
        )
        email = EmailChannel(
            ["ops@example.com"],
            sender="alerts@example.com",
            smtp_host="smtp.example.com",
            smtp_factory=StubSMTP,
        )

        result = await AlertDispatcher([webhook, email]).dispatch(alert)

        outcomes = {r.channel: r.success for r in result.results}
        assert outcomes == {"webhook": False, "email": True}
        assert attempts == 4
        assert len(StubSMTP.sent) == 1
        assert "Subject: Alert - volume_spike" in StubSMTP.sent[0][2]
