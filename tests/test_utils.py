"""Tests for shared helpers."""

from datetime import datetime, timezone

import pytest

from scripts.lib.utils import chunked, parse_ts, unique, whole_days_between


class TestParseTs:
    @pytest.mark.parametrize("value, expected", [
        ("2025-05-01T12:34:56.12+00:00", datetime(2025, 5, 1, 12, 34, 56, 120000, tzinfo=timezone.utc)),
        ("2025-05-01T12:34:56.12345+00:00", datetime(2025, 5, 1, 12, 34, 56, 123450, tzinfo=timezone.utc)),
        ("2025-05-01T12:34:56Z", datetime(2025, 5, 1, 12, 34, 56, tzinfo=timezone.utc)),
        ("2025-05-01T14:34:56+02:00", datetime(2025, 5, 1, 12, 34, 56, tzinfo=timezone.utc)),
        ("2025-05-01T12:34:56", datetime(2025, 5, 1, 12, 34, 56, tzinfo=timezone.utc)),
    ])
    def test_postgrest_timestamps(self, value, expected):
        assert parse_ts(value) == expected

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_unparseable_is_none(self, value):
        assert parse_ts(value) is None


class TestHelpers:
    def test_chunked(self):
        assert list(chunked(range(5), 2)) == [[0, 1], [2, 3], [4]]

    def test_unique_keeps_first_seen_order(self):
        assert unique(["b", None, "a", "b", ""]) == ["b", "a"]

    def test_whole_days_between(self):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert whole_days_between(start, datetime(2025, 1, 2, 23, 59, tzinfo=timezone.utc)) == 1
