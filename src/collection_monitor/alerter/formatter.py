"""Alert message formatter for multi-channel delivery.

This module transforms persisted alerts into the webhook JSON payload and
the plain-text email used by the notification channels.
"""

from __future__ import annotations

from collection_monitor.alerter.models import FormattedAlert
from collection_monitor.storage.repos import AlertDTO

SEVERITY_LABELS = {
    "info": "INFO",
    "warning": "WARNING",
    "critical": "CRITICAL",
}

ALERT_TYPE_TITLES = {
    "price_drop": "Price Drop",
    "volume_spike": "Volume Spike",
    "listing_depletion": "Listing Depletion",
}


def get_severity_label(severity: str) -> str:
    """Get the display label for a severity."""
    return SEVERITY_LABELS.get(severity, severity.upper())


def get_alert_title(alert_type: str) -> str:
    """Get a human-readable title for an alert type."""
    return ALERT_TYPE_TITLES.get(alert_type, alert_type.replace("_", " ").title())


def build_webhook_payload(alert: AlertDTO) -> dict[str, str]:
    """Normalized JSON body posted to webhooks."""
    return {
        "collectionId": alert.collection_id,
        "type": alert.alert_type,
        "severity": alert.severity,
        "message": alert.message,
        "triggeredAt": alert.triggered_at.isoformat(),
    }


def build_email_body(alert: AlertDTO) -> str:
    return (
        "Alert Notification\n"
        "==================\n"
        "\n"
        f"Collection ID: {alert.collection_id}\n"
        f"Type: {alert.alert_type}\n"
        f"Severity: {alert.severity}\n"
        f"Time: {alert.triggered_at.isoformat()}\n"
        "\n"
        "Message:\n"
        f"{alert.message}\n"
    )


class AlertFormatter:
    """Formats alerts into every channel representation at once."""

    def format(self, alert: AlertDTO) -> FormattedAlert:
        """Format an alert.

        Args:
            alert: The persisted alert.

        Returns:
            FormattedAlert with webhook payload and email text.
        """
        title = (
            f"[{get_severity_label(alert.severity)}] {get_alert_title(alert.alert_type)}"
            f" - {alert.collection_id}"
        )
        return FormattedAlert(
            alert_id=alert.id,
            collection_id=alert.collection_id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            title=title,
            payload=build_webhook_payload(alert),
            subject=f"Alert - {alert.alert_type}",
            body=build_email_body(alert),
        )
