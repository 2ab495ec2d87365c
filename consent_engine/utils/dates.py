"""
Date Utilities

Calendar arithmetic shared by the status and renewal calculators and the
batch jobs. All values are timezone-aware UTC datetimes.
"""

import math
from datetime import datetime, time, timedelta, timezone

from dateutil.relativedelta import relativedelta

SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """
    Normalize a datetime to UTC.

    Naive values are assumed to already be UTC (some drivers, SQLite in
    particular, drop the offset on the way back from the database).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """
    Advance a datetime by whole calendar months.

    When the target month is shorter than the source day-of-month, the result
    is clamped to the last day of the target month (Jan 31 + 1 month is
    Feb 28, or Feb 29 in a leap year). The time of day is preserved.
    """
    return value + relativedelta(months=months)


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min, tzinfo=value.tzinfo)


def end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.max, tzinfo=value.tzinfo)


def day_window(now: datetime, days_ahead: int) -> tuple[datetime, datetime]:
    """Return the [start, end] bounds of the calendar day `days_ahead` days after `now`."""
    target = now + timedelta(days=days_ahead)
    return start_of_day(target), end_of_day(target)


def days_until(target: datetime, now: datetime) -> int:
    """Whole days from `now` to `target`, rounded up. Negative once `target` has passed."""
    return math.ceil((target - now).total_seconds() / SECONDS_PER_DAY)


def format_date(value: datetime) -> str:
    """Format as '1 Jul 2025'."""
    return f"{value.day} {value.strftime('%b %Y')}"


def pluralize_days(days: int) -> str:
    return f"{days} day" if abs(days) == 1 else f"{days} days"
