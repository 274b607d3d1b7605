"""Shared time helpers used across the engine services.

utcnow:          timezone-aware "now"
as_utc:          normalise SQLite-naive datetimes to UTC-aware
parse_datetime:  ISO string → datetime (None on empty input)
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes; PostgreSQL returns tz-aware.
    Every comparison against an aware "now" goes through this helper so the
    same code works in both environments.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(val: str | datetime | None) -> datetime | None:
    """Convert an ISO-format string to a UTC-aware datetime.

    Args:
        val: An ISO-format string, an existing datetime, or None.

    Returns:
        Parsed datetime or None when the input is empty/None.

    Raises:
        ValueError: the string is not ISO 8601.
    """
    if val is None:
        return None
    if isinstance(val, datetime):
        return as_utc(val)
    val = val.strip()
    if not val:
        return None
    if val.endswith("Z"):
        val = val[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(val))
