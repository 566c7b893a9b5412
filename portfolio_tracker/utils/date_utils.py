# portfolio_tracker/utils/date_utils.py
"""
Date utility functions for the Portfolio Tracker.

Every business date is a calendar day in UTC. Timestamps only break
ordering ties (created_at), they never change which day an event falls on.

Usage:
    from portfolio_tracker.utils.date_utils import to_utc_date, days_between

    held = days_between(lot.purchase_date, sale_date)
"""

from datetime import date, datetime, timedelta, timezone

from portfolio_tracker.services.constants import LONG_TERM_HOLDING_DAYS


def to_utc_date(value: date | datetime | str) -> date:
    """
    Normalize a date, datetime or ISO string to a UTC calendar day.

    Naive datetimes are taken as UTC; aware datetimes are converted first.

    Example:
        >>> to_utc_date(datetime(2024, 1, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5))))
        datetime.date(2024, 1, 2)
    """
    if isinstance(value, str):
        value = value.strip()
        if "T" in value or " " in value:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        else:
            return date.fromisoformat(value)

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()

    return value


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def days_between(start: date, end: date) -> int:
    """Whole calendar days from start to end (negative when end precedes start)."""
    return (end - start).days


def is_long_term(purchase_date: date, sale_date: date) -> bool:
    """True when the lot was held at least LONG_TERM_HOLDING_DAYS at sale."""
    return days_between(purchase_date, sale_date) >= LONG_TERM_HOLDING_DAYS


def date_range(start_date: date, end_date: date) -> list[date]:
    """All calendar days from start_date to end_date inclusive."""
    days = []
    current = start_date
    while current <= end_date:
        days.append(current)
        current += timedelta(days=1)
    return days


def year_bounds(year: int) -> tuple[date, date]:
    """First and last day of a calendar year."""
    return date(year, 1, 1), date(year, 12, 31)


def as_naive_utc(value: datetime | None) -> datetime:
    """
    Comparable UTC timestamp for ordering ties.

    SQLite hands back naive datetimes while fresh rows carry aware ones;
    both are compared as naive UTC. None sorts first.
    """
    if value is None:
        return datetime.min
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
