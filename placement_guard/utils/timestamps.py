"""Timestamp utilities for UTC handling and calendar arithmetic.

This module provides utilities for working with timestamps in UTC:
- Getting current UTC time
- Converting timezone-naive to timezone-aware UTC
- Day boundaries used by the daily batch passes
- Calendar-month arithmetic for protection windows
"""

import calendar
from datetime import datetime, time, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC time with timezone info

    Example:
        >>> now = utc_now()
        >>> now.tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    If the datetime is timezone-naive, it's treated as UTC.
    If the datetime has a different timezone, it's converted to UTC.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def start_of_day(dt: datetime) -> datetime:
    """Return midnight UTC of the day containing ``dt``."""
    dt = ensure_utc(dt)
    return datetime.combine(dt.date(), time.min, tzinfo=timezone.utc)


def end_of_day(dt: datetime) -> datetime:
    """Return midnight UTC of the day after ``dt``.

    Used as an inclusive upper bound for "due today" queries, so anything
    scheduled at any point during the current UTC day is selected.

    Example:
        >>> end_of_day(datetime(2025, 3, 1, 15, 30, tzinfo=timezone.utc))
        datetime.datetime(2025, 3, 2, 0, 0, tzinfo=datetime.timezone.utc)
    """
    return start_of_day(dt) + timedelta(days=1)


def add_days(dt: datetime, days: int) -> datetime:
    """Add a whole number of days to a UTC datetime."""
    return ensure_utc(dt) + timedelta(days=days)


def add_months(dt: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length.

    Args:
        dt: Starting datetime
        months: Number of months to add (may be negative)

    Returns:
        Timezone-aware UTC datetime ``months`` calendar months later

    Example:
        >>> add_months(datetime(2024, 2, 29, tzinfo=timezone.utc), 12)
        datetime.datetime(2025, 2, 28, 0, 0, tzinfo=datetime.timezone.utc)
    """
    dt = ensure_utc(dt)
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed from ``earlier`` to ``later`` (floored)."""
    delta = ensure_utc(later) - ensure_utc(earlier)
    return delta.days


def format_timestamp(dt: datetime, include_microseconds: bool = False) -> str:
    """Format a datetime as ISO 8601 string in UTC.

    Args:
        dt: Datetime to format
        include_microseconds: Whether to include microseconds in output

    Returns:
        ISO 8601 formatted string with 'Z' suffix
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return ""

    if include_microseconds:
        return dt_utc.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%SZ")


def format_date_for_display(dt: Optional[datetime]) -> str:
    """Format a datetime for email bodies, e.g. ``Mar 04, 2025``."""
    if dt is None:
        return "N/A"
    return ensure_utc(dt).strftime("%b %d, %Y")
