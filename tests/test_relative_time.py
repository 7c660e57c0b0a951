from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from streamchat.utils.time import relative_time

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestRelativeTime:
    """Tests for relative time formatting."""

    @pytest.mark.parametrize(
        "delta_s,expected",
        [
            (0, "just now"),
            (59, "just now"),
            (60, "1m ago"),
            (840, "14m ago"),
            (3599, "59m ago"),
            (3600, "1h ago"),
            (82800, "23h ago"),
            (86400, "1d ago"),
            (604800, "7d ago"),
        ],
    )
    def test_various_deltas(self, delta_s: int, expected: str):
        assert relative_time(NOW - timedelta(seconds=delta_s), NOW) == expected

    def test_future_time_returns_just_now(self):
        assert relative_time(NOW + timedelta(minutes=5), NOW) == "just now"
