"""
Calendar utilities for billing cycles.

Billing is calendar-day based: a lease's due date in a given month is its
due day clamped to the month's length, so due day 31 falls on 30 April and
on 28/29 February. A billing cycle is identified by its due date.
"""

from datetime import date, datetime, timedelta
from typing import Tuple
from zoneinfo import ZoneInfo


def get_last_day_of_month(year: int, month: int) -> date:
    """
    Get the last day of a given month.

    Args:
        year: Target year
        month: Target month (1-12)

    Returns:
        date: Last day of the specified month
    """
    if month == 12:
        return date(year, 12, 31)
    else:
        return date(year, month + 1, 1) - timedelta(days=1)


def shift_month(year: int, month: int, months: int) -> Tuple[int, int]:
    """
    Move (year, month) by a number of months, forwards or backwards.

    Example:
        >>> shift_month(2025, 12, 1)
        (2026, 1)
    """
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def due_date_in_month(year: int, month: int, due_day: int) -> date:
    """
    Due date for a due day within a specific month.

    Args:
        year: Target year
        month: Target month (1-12)
        due_day: Lease due day-of-month (1-31)

    Returns:
        date: The due day, clamped to the last day of the month
    """
    last_day = get_last_day_of_month(year, month).day
    return date(year, month, min(due_day, last_day))


def is_due_date(target: date, due_day: int) -> bool:
    """True if target is the (clamped) due date of its own month."""
    return target == due_date_in_month(target.year, target.month, due_day)


def next_due_date(after: date, due_day: int) -> date:
    """
    First due date strictly after a date.

    Example:
        >>> next_due_date(date(2026, 5, 10), 15)
        date(2026, 5, 15)
        >>> next_due_date(date(2026, 5, 15), 15)
        date(2026, 6, 15)
    """
    this_month = due_date_in_month(after.year, after.month, due_day)
    if this_month > after:
        return this_month
    year, month = shift_month(after.year, after.month, 1)
    return due_date_in_month(year, month, due_day)


def previous_due_date(on_or_before: date, due_day: int) -> date:
    """Latest due date on or before a date."""
    this_month = due_date_in_month(on_or_before.year, on_or_before.month, due_day)
    if this_month <= on_or_before:
        return this_month
    year, month = shift_month(on_or_before.year, on_or_before.month, -1)
    return due_date_in_month(year, month, due_day)


def billing_cycle(containing: date, due_day: int) -> Tuple[date, date]:
    """
    Billing cycle containing a date as a half-open range.

    Returns:
        (cycle_start, next_cycle_start): cycle_start <= containing < next_cycle_start
    """
    start = previous_due_date(containing, due_day)
    return start, next_due_date(start, due_day)


def parse_date_string(date_str: str) -> date:
    """
    Parse a date string in YYYY-MM-DD format.

    Example:
        >>> parse_date_string("2025-01-15")
        date(2025, 1, 15)
    """
    parts = date_str.split('-')
    return date(int(parts[0]), int(parts[1]), int(parts[2]))


def today_in_timezone(tz_name: str) -> date:
    """
    Calendar date right now in a named timezone.

    Run dates are pinned to the billing timezone, not the host clock.

    Example:
        >>> today_in_timezone('Africa/Kampala')
        date(2026, 5, 14)
    """
    return datetime.now(ZoneInfo(tz_name)).date()
