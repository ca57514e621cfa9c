"""
Datetime utility functions.
Provides timezone-safe helpers shared by the services.
"""

from datetime import datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read back from the database to an aware UTC value.

    SQLite drops tzinfo on DateTime(timezone=True) columns, so naive values
    are assumed to already be UTC. PostgreSQL values are converted.

    Args:
        value: Datetime or None

    Returns:
        Aware UTC datetime, or None if value is None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601 UTC, passing None through."""
    value = ensure_utc(value)
    return value.isoformat() if value else None
