"""Email notification channel (best effort)."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from collections.abc import Callable, Sequence
from email.mime.text import MIMEText

from collection_monitor.alerter.dispatcher import AlertChannel
from collection_monitor.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)


class EmailChannel(AlertChannel):
    """Sends the plain-text alert by SMTP.

    Without an SMTP host the composed message is written to the log
    instead. Failures are logged and reported as False, never raised.
    """

    name = "email"

    def __init__(
        self,
        recipients: Sequence[str],
        *,
        sender: str,
        smtp_host: str | None = None,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        timeout_seconds: float = 10.0,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        if not recipients:
            raise ValueError("EmailChannel requires at least one recipient")
        self._recipients = list(recipients)
        self._sender = sender
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._smtp_user = smtp_user
        self._smtp_password = smtp_password
        self._timeout = timeout_seconds
        self._smtp_factory = smtp_factory

    def build_message(self, alert: FormattedAlert) -> MIMEText:
        msg = MIMEText(alert.body, "plain", "utf-8")
        msg["Subject"] = alert.subject
        msg["From"] = self._sender
        msg["To"] = ", ".join(self._recipients)
        return msg

    async def send(self, alert: FormattedAlert) -> bool:
        msg = self.build_message(alert)

        if not self._smtp_host:
            logger.info(
                "[EMAIL] To: %s\nSubject: %s\n%s", msg["To"], alert.subject, alert.body
            )
            return True

        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Failed to send email notification: alert=%s to=%s error=%s",
                alert.alert_id,
                msg["To"],
                e,
            )
            return False

        logger.info(
            "Email notification sent: alert=%s recipients=%d",
            alert.alert_id,
            len(self._recipients),
        )
        return True

    def _deliver(self, msg: MIMEText) -> None:
        with self._smtp_factory(self._smtp_host, self._smtp_port, timeout=self._timeout) as server:
            if self._smtp_port == 587:
                server.starttls()
            if self._smtp_user and self._smtp_password:
                server.login(self._smtp_user, self._smtp_password)
            server.sendmail(self._sender, self._recipients, msg.as_string())
