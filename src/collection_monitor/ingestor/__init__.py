"""Data ingestion layer - Market event intake and dirty tracking."""

from collection_monitor.ingestor.dirty_set import DirtySet, InMemoryDirtySet, RedisDirtySet
from collection_monitor.ingestor.intake import EventIntake, IngestResult, synthesize_record_id
from collection_monitor.ingestor.models import (
    CollectionMetadata,
    IntakePayload,
    MarketEvent,
    MarketSnapshot,
)

__all__ = [
    "CollectionMetadata",
    "DirtySet",
    "EventIntake",
    "InMemoryDirtySet",
    "IngestResult",
    "IntakePayload",
    "MarketEvent",
    "MarketSnapshot",
    "RedisDirtySet",
    "synthesize_record_id",
]
