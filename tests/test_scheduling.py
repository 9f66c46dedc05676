"""Tests for hourly job scheduling."""

from datetime import UTC, datetime

import pytest

from collection_monitor.scheduling import next_run_at, seconds_until_next_run


class TestNextRunAt:
    """Tests for next_run_at."""

    def test_later_this_hour(self) -> None:
        now = datetime(2026, 10, 19, 12, 5, 30, tzinfo=UTC)
        assert next_run_at(now, 10) == datetime(2026, 10, 19, 12, 10, tzinfo=UTC)

    def test_rolls_to_next_hour(self) -> None:
        now = datetime(2026, 10, 19, 12, 15, tzinfo=UTC)
        assert next_run_at(now, 10) == datetime(2026, 10, 19, 13, 10, tzinfo=UTC)

    def test_rolls_over_midnight(self) -> None:
        now = datetime(2026, 10, 19, 23, 30, tzinfo=UTC)
        assert next_run_at(now, 0) == datetime(2026, 10, 20, 0, 0, tzinfo=UTC)

    def test_exactly_on_the_mark_is_due(self) -> None:
        now = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
        assert seconds_until_next_run(now, 0) == 0.0

    def test_just_past_the_mark_waits_an_hour(self) -> None:
        now = datetime(2026, 10, 19, 12, 0, 1, tzinfo=UTC)
        assert seconds_until_next_run(now, 0) == 3599.0

    @pytest.mark.parametrize("minute", [-1, 60])
    def test_invalid_minute(self, minute: int) -> None:
        with pytest.raises(ValueError):
            next_run_at(datetime(2026, 10, 19, tzinfo=UTC), minute)
