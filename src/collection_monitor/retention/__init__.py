"""Retention - Batched deletion of expired event, snapshot and metric rows."""

from collection_monitor.retention.sweeper import (
    MAX_BATCH_ITERATIONS,
    RETAINED_TABLES,
    SKIPPED_TABLES,
    RetentionSweeper,
    SweepSummary,
)

__all__ = [
    "MAX_BATCH_ITERATIONS",
    "RETAINED_TABLES",
    "SKIPPED_TABLES",
    "RetentionSweeper",
    "SweepSummary",
]
