"""Tests for YearMonth and minute/hour conversions"""
from datetime import date
from decimal import Decimal

import pytest

from clientbilling.domain.errors import BillingValidationError
from clientbilling.domain.hours import format_minutes, hours_to_minutes, minutes_to_hours, whole_minutes
from clientbilling.domain.months import YearMonth, iter_months


class TestYearMonth:
    def test_from_date_and_str(self):
        assert str(YearMonth.from_date(date(2024, 3, 15))) == "2024-03"

    def test_parse(self):
        assert YearMonth.parse("2024-11") == YearMonth(2024, 11)

    def test_parse_rejects_garbage(self):
        with pytest.raises(BillingValidationError):
            YearMonth.parse("March")

    def test_rejects_month_13(self):
        with pytest.raises(BillingValidationError):
            YearMonth(2024, 13)

    def test_shift_across_year(self):
        assert YearMonth(2024, 11).shift(3) == YearMonth(2025, 2)
        assert YearMonth(2024, 1).shift(-1) == YearMonth(2023, 12)

    def test_months_until(self):
        assert YearMonth(2023, 11).months_until(YearMonth(2024, 2)) == 3
        assert YearMonth(2024, 2).months_until(YearMonth(2023, 11)) == -3

    def test_first_and_last_day_leap_year(self):
        feb = YearMonth(2024, 2)
        assert feb.first_day == date(2024, 2, 1)
        assert feb.last_day == date(2024, 2, 29)

    def test_ordering(self):
        assert YearMonth(2023, 12) < YearMonth(2024, 1) < YearMonth(2024, 2)

    def test_iter_months_inclusive(self):
        months = list(iter_months(YearMonth(2023, 11), YearMonth(2024, 2)))
        assert [str(m) for m in months] == ["2023-11", "2023-12", "2024-01", "2024-02"]

    def test_iter_months_empty_when_reversed(self):
        assert list(iter_months(YearMonth(2024, 2), YearMonth(2024, 1))) == []


class TestHours:
    def test_minutes_to_hours_is_exact_to_four_places(self):
        assert minutes_to_hours(90) == Decimal("1.5")
        assert minutes_to_hours(1) == Decimal("0.0167")

    def test_hours_to_minutes(self):
        assert hours_to_minutes(Decimal("10.25")) == Decimal("615")

    def test_whole_minutes_rounds_half_up(self):
        assert whole_minutes(Decimal("59.5")) == 60
        assert whole_minutes(Decimal("59.4")) == 59

    def test_format_minutes(self):
        assert format_minutes(90) == "1:30"
        assert format_minutes(600) == "10:00"
        assert format_minutes(5) == "0:05"
