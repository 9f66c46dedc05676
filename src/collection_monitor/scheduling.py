"""Wall-clock scheduling helpers for the hourly jobs."""

from __future__ import annotations

from datetime import datetime, timedelta

HOURLY_REFRESH_MINUTE = 0


def next_run_at(now: datetime, minute: int) -> datetime:
    """Return the next ``HH:minute:00`` at or after ``now``.

    Exactly on the mark counts as due, so the job runs immediately.
    """
    if not 0 <= minute <= 59:
        raise ValueError(f"minute must be in 0..59, got {minute}")
    candidate = now.replace(minute=minute, second=0, microsecond=0)
    if candidate < now:
        candidate += timedelta(hours=1)
    return candidate


def seconds_until_next_run(now: datetime, minute: int) -> float:
    """Seconds to wait from ``now`` until the next run at ``minute`` past the hour."""
    return (next_run_at(now, minute) - now).total_seconds()
