"""Datetime utilities for timezone-aware UTC timestamps.

This module provides a replacement for the deprecated datetime.utcnow()
function. Python 3.12+ deprecates utcnow() in favor of timezone-aware
datetime objects.

Usage:
    from batchline.utils.datetime_utils import utc_now

    # Instead of datetime.utcnow()
    timestamp = utc_now()

    # For SQLAlchemy Column defaults
    created_at = Column(DateTime, default=utc_now)
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to timezone-aware UTC.

    SQLite hands back naive datetimes even when aware values were stored,
    so comparisons between stored and fresh timestamps go through here.
    Naive values are assumed to already be UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """Return [start, end) UTC bounds for a calendar month."""
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end
