"""Tests for period parsing and boundaries."""

from datetime import datetime, timezone

import pytest

from payout_engine.calculators import Period
from payout_engine.exceptions import InvalidPeriod


class TestPeriodParse:
    def test_parses_year_month(self):
        period = Period.parse("2025-11")
        assert (period.year, period.month) == (2025, 11)
        assert period.label == "2025-11"
        assert str(period) == "2025-11"

    def test_strips_whitespace(self):
        assert Period.parse(" 2025-01 ").label == "2025-01"

    @pytest.mark.parametrize("value", ["2025-13", "2025-00", "2025-1", "25-11", "2025/11", "November", "2025-11-01"])
    def test_rejects_malformed(self, value):
        with pytest.raises(InvalidPeriod):
            Period.parse(value)

    @pytest.mark.parametrize("value", [None, "", "   ", 202511])
    def test_rejects_missing(self, value):
        with pytest.raises(InvalidPeriod) as exc_info:
            Period.parse(value)
        assert exc_info.value.code == "INVALID_PERIOD"

    def test_from_year_month_validates_month(self):
        with pytest.raises(InvalidPeriod):
            Period.from_year_month(2025, 13)

    def test_next_rolls_over_year(self):
        assert Period.parse("2025-12").next() == Period(2026, 1)
        assert Period.parse("2025-11").next() == Period(2025, 12)

    def test_ordering(self):
        assert Period.parse("2025-02") < Period.parse("2025-11") < Period.parse("2026-01")


class TestPeriodBounds:
    def test_utc_bounds_are_half_open_month(self):
        start, end = Period.parse("2025-11").bounds("UTC")
        assert start == datetime(2025, 11, 1, tzinfo=timezone.utc)
        assert end == datetime(2025, 12, 1, tzinfo=timezone.utc)

    def test_reference_timezone_is_converted_to_utc(self):
        # Nairobi is UTC+3 with no DST
        start, end = Period.parse("2025-11").bounds("Africa/Nairobi")
        assert start == datetime(2025, 10, 31, 21, 0, tzinfo=timezone.utc)
        assert end == datetime(2025, 11, 30, 21, 0, tzinfo=timezone.utc)
        assert start.tzinfo == timezone.utc

    def test_december_ends_in_next_year(self):
        _, end = Period.parse("2025-12").bounds("UTC")
        assert end == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_unknown_timezone(self):
        with pytest.raises(ValueError):
            Period.parse("2025-11").bounds("Mars/Olympus_Mons")
