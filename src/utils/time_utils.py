# coding: utf-8
"""
UTC helpers

SQLite returns naive datetimes for DateTime(timezone=True) columns; all
timestamps in this project are UTC, so naive values are read as UTC.
"""
from datetime import datetime, timedelta, UTC
from typing import Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def hour_ago(now: datetime) -> datetime:
    """Start of the rolling one-hour window ending at now."""
    return now - timedelta(hours=1)


def day_window(now: datetime) -> Tuple[datetime, datetime]:
    """Current UTC calendar day: (midnight, next midnight)."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def period_start(period: str, now: datetime) -> Optional[datetime]:
    """
    Start of a ranking period

    Args:
        period: 'today', 'week', 'month' or 'all'
        now: Reference time

    Returns:
        Start datetime, None for 'all'
    """
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return today
    if period == "week":
        return today - timedelta(days=today.weekday())
    if period == "month":
        return today.replace(day=1)
    if period == "all":
        return None
    raise ValueError(f"Unknown period: {period}")
