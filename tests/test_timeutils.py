"""
Test suite for operational calendar helpers
"""

import pytest
from datetime import date, datetime, timezone, timedelta

from field_collections.exceptions import InvalidTimestamp
from field_collections.timeutils import (
    add_months, day_bounds, is_within, operational_date, parse_instant,
    range_bounds, require_aware, week_bounds
)

BA = "America/Argentina/Buenos_Aires"


class TestOperationalDay:
    """Test that days are evaluated in the operational timezone"""

    def test_late_evening_stays_on_local_day(self):
        """Test 02:00 UTC is still the previous day in Buenos Aires"""
        instant = datetime(2024, 1, 16, 2, 0, tzinfo=timezone.utc)

        assert operational_date(instant, BA) == date(2024, 1, 15)
        assert instant.date() == date(2024, 1, 16)

    def test_day_bounds(self):
        """Test that a local day maps to a half-open UTC range"""
        start, end = day_bounds(date(2024, 1, 15), BA)

        assert start == datetime(2024, 1, 15, 3, 0, tzinfo=timezone.utc)
        assert end == datetime(2024, 1, 16, 3, 0, tzinfo=timezone.utc)
        assert end - start == timedelta(days=1)

    def test_range_bounds_inclusive(self):
        """Test that a date range covers both end days"""
        start, end = range_bounds(date(2024, 1, 15), date(2024, 1, 21), BA)

        assert start == datetime(2024, 1, 15, 3, 0, tzinfo=timezone.utc)
        assert end == datetime(2024, 1, 22, 3, 0, tzinfo=timezone.utc)

    def test_week_bounds(self):
        """Test Monday..Sunday week containing a date"""
        assert week_bounds(date(2024, 1, 17)) == (date(2024, 1, 15), date(2024, 1, 21))
        assert week_bounds(date(2024, 1, 15)) == (date(2024, 1, 15), date(2024, 1, 21))
        assert week_bounds(date(2024, 1, 21)) == (date(2024, 1, 15), date(2024, 1, 21))

    def test_is_within(self):
        """Test half-open membership"""
        start, end = day_bounds(date(2024, 1, 15), BA)

        assert is_within(start, start, end)
        assert not is_within(end, start, end)
        assert is_within(end, start, None)


class TestInstants:
    """Test instant validation and parsing"""

    def test_naive_datetime_rejected(self):
        """Test that naive datetimes are refused"""
        with pytest.raises(InvalidTimestamp, match="timezone-aware"):
            require_aware(datetime(2024, 1, 15, 10, 0))

    def test_parse_instant_with_z(self):
        """Test ISO-8601 parsing with a trailing Z"""
        parsed = parse_instant("2024-01-15T13:00:00Z")

        assert parsed == datetime(2024, 1, 15, 13, 0, tzinfo=timezone.utc)

    def test_parse_instant_with_offset(self):
        """Test ISO-8601 parsing with an explicit offset"""
        parsed = parse_instant("2024-01-15T10:00:00-03:00")

        assert parsed == datetime(2024, 1, 15, 13, 0, tzinfo=timezone.utc)

    def test_parse_invalid_instant(self):
        """Test rejection of garbage and naive strings"""
        with pytest.raises(InvalidTimestamp):
            parse_instant("yesterday")

        with pytest.raises(InvalidTimestamp):
            parse_instant("2024-01-15T10:00:00")


class TestAddMonths:
    """Test calendar month arithmetic"""

    def test_add_months(self):
        """Test month addition with year rollover and clamping"""
        assert add_months(date(2024, 1, 15), 1) == date(2024, 2, 15)
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
        assert add_months(date(2023, 3, 31), -1) == date(2023, 2, 28)
