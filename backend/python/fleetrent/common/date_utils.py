"""
Date utilities for billing and analytics.

Timestamps are stored as naive UTC datetimes. Calendar days ("today",
"yesterday", "last month") are evaluated in the operating timezone of the
deployment, so day boundaries are converted back to naive UTC before they
are used in queries.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

import pytz

DEFAULT_TIMEZONE = 'Asia/Bishkek'


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (database storage format)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_local(moment: datetime, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """
    Convert a naive UTC (or aware) datetime to the operating timezone.

    Args:
        moment: Datetime to convert; naive values are treated as UTC
        tz_name: Operating timezone name

    Returns:
        datetime: Timezone-aware datetime in the operating timezone
    """
    if moment.tzinfo is None:
        moment = pytz.UTC.localize(moment)
    return moment.astimezone(pytz.timezone(tz_name))


def local_today(tz_name: str = DEFAULT_TIMEZONE, now: Optional[datetime] = None) -> date:
    """Calendar date in the operating timezone."""
    return to_local(now or utcnow(), tz_name).date()


def local_day_bounds(day: date, tz_name: str = DEFAULT_TIMEZONE) -> Tuple[datetime, datetime]:
    """
    Get the UTC boundaries of a local calendar day.

    Args:
        day: Local calendar date
        tz_name: Operating timezone name

    Returns:
        Tuple[datetime, datetime]: (start, end) as naive UTC, end exclusive
    """
    return local_range_bounds(day, day + timedelta(days=1), tz_name)


def local_range_bounds(start_day: date, end_day: date,
                       tz_name: str = DEFAULT_TIMEZONE) -> Tuple[datetime, datetime]:
    """UTC boundaries of the local half-open date range [start_day, end_day)."""
    tz = pytz.timezone(tz_name)
    start = tz.localize(datetime.combine(start_day, time.min)).astimezone(pytz.UTC)
    end = tz.localize(datetime.combine(end_day, time.min)).astimezone(pytz.UTC)
    return start.replace(tzinfo=None), end.replace(tzinfo=None)


def get_previous_month_range(day: date) -> Tuple[date, date]:
    """
    Get the first day of the previous month and the first day of the month of `day`.

    Args:
        day: Reference date

    Returns:
        Tuple[date, date]: (first day of previous month, first day of current month)
    """
    this_month = day.replace(day=1)
    last_month = (this_month - timedelta(days=1)).replace(day=1)
    return last_month, this_month


def years_before(day: date, years: int) -> date:
    """Same calendar day `years` years earlier (Feb 29 falls back to Feb 28)."""
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        return day.replace(year=day.year - years, day=28)


def days_between(start: date, end: date) -> int:
    """Whole days from start to end, never negative."""
    return abs((end - start).days)
