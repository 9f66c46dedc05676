"""Alerting layer - Formatting and multi-channel notification delivery."""

from collection_monitor.alerter.dispatcher import AlertChannel, AlertDispatcher
from collection_monitor.alerter.formatter import AlertFormatter
from collection_monitor.alerter.models import ChannelResult, DispatchResult, FormattedAlert

__all__ = [
    "AlertChannel",
    "AlertDispatcher",
    "AlertFormatter",
    "ChannelResult",
    "DispatchResult",
    "FormattedAlert",
]
