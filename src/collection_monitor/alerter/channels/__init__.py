"""Notification channels."""

from collection_monitor.alerter.channels.email import EmailChannel
from collection_monitor.alerter.channels.webhook import WebhookChannel

__all__ = ["EmailChannel", "WebhookChannel"]
