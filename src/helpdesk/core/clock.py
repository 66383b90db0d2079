"""
Clock and Period Calculator
===========================

Pure time arithmetic shared by billing and SLA code. Nothing here reads the
database or the settings; callers pass the instant they care about.
"""

import calendar
from datetime import datetime, timedelta, timezone
from typing import Tuple


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """
    Shift a datetime by whole calendar months.

    The day is clamped to the last day of the target month, so Jan 31 + 1
    month is Feb 28 (or 29).
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def billing_period(start: datetime, months: int = 1) -> Tuple[datetime, datetime]:
    """Return the half-open billing period [start, start + months)."""
    start = ensure_utc(start)
    return start, add_months(start, months)


def deadline_after(start: datetime, minutes: int) -> datetime:
    """Deadline ``minutes`` after ``start``."""
    return ensure_utc(start) + timedelta(minutes=minutes)
