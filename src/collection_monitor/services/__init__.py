"""Read services - Queries over metrics and alert history."""

from collection_monitor.services.alert_read import (
    AlertCounts,
    AlertFilters,
    AlertPage,
    AlertReadService,
    Pagination,
)
from collection_monitor.services.analytics_read import (
    AnalyticsReadService,
    CollectionAnalytics,
    WindowStats,
)

__all__ = [
    "AlertCounts",
    "AlertFilters",
    "AlertPage",
    "AlertReadService",
    "AnalyticsReadService",
    "CollectionAnalytics",
    "Pagination",
    "WindowStats",
]
