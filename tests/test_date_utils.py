"""Tests for calendar helpers."""

from datetime import date

import pytest

from rentledger.common.date_utils import (
    billing_cycle,
    due_date_in_month,
    get_last_day_of_month,
    is_due_date,
    next_due_date,
    parse_date_string,
    previous_due_date,
    shift_month,
    today_in_timezone,
)


class TestMonthArithmetic:

    def test_last_day_of_month(self):
        assert get_last_day_of_month(2026, 2) == date(2026, 2, 28)
        assert get_last_day_of_month(2028, 2) == date(2028, 2, 29)
        assert get_last_day_of_month(2026, 12) == date(2026, 12, 31)

    @pytest.mark.parametrize('year, month, months, expected', [
        (2025, 12, 1, (2026, 1)),
        (2026, 1, -1, (2025, 12)),
        (2026, 5, 12, (2027, 5)),
    ])
    def test_shift_month(self, year, month, months, expected):
        assert shift_month(year, month, months) == expected


class TestDueDates:

    def test_due_day_clamped_to_short_months(self):
        assert due_date_in_month(2026, 4, 31) == date(2026, 4, 30)
        assert due_date_in_month(2026, 2, 30) == date(2026, 2, 28)
        assert due_date_in_month(2028, 2, 31) == date(2028, 2, 29)

    def test_is_due_date_uses_clamped_day(self):
        assert is_due_date(date(2026, 4, 30), 31)
        assert not is_due_date(date(2026, 4, 29), 31)
        assert is_due_date(date(2026, 5, 15), 15)

    def test_next_due_date_is_strictly_after(self):
        assert next_due_date(date(2026, 5, 10), 15) == date(2026, 5, 15)
        assert next_due_date(date(2026, 5, 15), 15) == date(2026, 6, 15)
        assert next_due_date(date(2026, 12, 20), 15) == date(2027, 1, 15)

    def test_previous_due_date_is_on_or_before(self):
        assert previous_due_date(date(2026, 5, 15), 15) == date(2026, 5, 15)
        assert previous_due_date(date(2026, 5, 10), 15) == date(2026, 4, 15)
        assert previous_due_date(date(2026, 1, 10), 15) == date(2025, 12, 15)

    def test_billing_cycle_contains_date(self):
        assert billing_cycle(date(2026, 5, 10), 15) == (date(2026, 4, 15), date(2026, 5, 15))
        assert billing_cycle(date(2026, 5, 15), 15) == (date(2026, 5, 15), date(2026, 6, 15))


def test_parse_date_string():
    assert parse_date_string('2026-05-10') == date(2026, 5, 10)
    with pytest.raises(ValueError):
        parse_date_string('2026-13-01')


def test_today_in_timezone_returns_date():
    assert isinstance(today_in_timezone('Africa/Kampala'), date)
