"""Storage layer - Database schemas and repositories."""

from collection_monitor.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    normalize_async_database_url,
)
from collection_monitor.storage.models import (
    AlertModel,
    Base,
    CollectionModel,
    ComputedMetricModel,
    ListingEventModel,
    MarketSnapshotModel,
    PurchaseEventModel,
)

__all__ = [
    "AlertModel",
    "Base",
    "CollectionModel",
    "ComputedMetricModel",
    "DatabaseManager",
    "ListingEventModel",
    "MarketSnapshotModel",
    "PurchaseEventModel",
    "create_async_db_engine",
    "normalize_async_database_url",
]
