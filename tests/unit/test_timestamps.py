"""
Unit tests for dataset timestamp parsing.
"""

from datetime import datetime

import pandas as pd
import pytest

from event_training.utils.timestamps import epoch_seconds, parse_timestamp


class TestParseTimestamp:

    def test_datetime_strings(self):
        assert parse_timestamp("2024-01-15 10:30:00") == pd.Timestamp(2024, 1, 15, 10, 30)
        assert parse_timestamp(" 2024-01-15T10:30:00 ") == pd.Timestamp(2024, 1, 15, 10, 30)

    def test_epoch_values(self):
        assert parse_timestamp(0) == pd.Timestamp(1970, 1, 1)
        assert parse_timestamp("1700000000") == pd.Timestamp(2023, 11, 14, 22, 13, 20)
        assert parse_timestamp(1700000000.9) == pd.Timestamp(2023, 11, 14, 22, 13, 20)

    def test_year_month_resolves_to_end_of_month(self):
        assert parse_timestamp("2024-02") == pd.Timestamp(2024, 2, 29, 23, 59, 59)
        assert parse_timestamp("2023-12") == pd.Timestamp(2023, 12, 31, 23, 59, 59)

    def test_native_datetimes(self):
        assert parse_timestamp(datetime(2024, 3, 1, 8)) == pd.Timestamp(2024, 3, 1, 8)

    @pytest.mark.parametrize("value", [None, "", "   ", "garbage", True, float("nan"), [2024]])
    def test_unparseable_values(self, value):
        assert parse_timestamp(value) is None


class TestEpochSeconds:

    def test_naive(self):
        assert epoch_seconds(pd.Timestamp(1970, 1, 2)) == 86400.0

    def test_timezone_aware(self):
        assert epoch_seconds(pd.Timestamp("2024-01-01T00:00:00+01:00")) == 1704063600.0
