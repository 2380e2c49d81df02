"""Utility functions for time handling."""

from .timestamps import (
    add_days,
    add_months,
    days_between,
    end_of_day,
    ensure_utc,
    format_date_for_display,
    format_timestamp,
    start_of_day,
    utc_now,
)

__all__ = [
    "utc_now",
    "ensure_utc",
    "start_of_day",
    "end_of_day",
    "add_days",
    "add_months",
    "days_between",
    "format_timestamp",
    "format_date_for_display",
]
