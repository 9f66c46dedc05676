"""Analytics layer - Rolling-window metrics."""

from collection_monitor.analytics.engine import MetricsEngine, RefreshLog, RefreshSummary
from collection_monitor.analytics.metrics import (
    EMPTY_METRICS,
    MetricWindow,
    WindowMetrics,
    calculate_metrics,
    compute_all_windows,
    compute_window,
    select_window,
)

__all__ = [
    "EMPTY_METRICS",
    "MetricWindow",
    "MetricsEngine",
    "RefreshLog",
    "RefreshSummary",
    "WindowMetrics",
    "calculate_metrics",
    "compute_all_windows",
    "compute_window",
    "select_window",
]
