"""Date manipulation utilities"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def parse_provider_datetime(value: str) -> datetime:
    """
    Parse a provider date or datetime string into an aware UTC datetime.

    Plain dates ("2024-03-01") map to midnight UTC.
    """
    if len(value) == 10:
        return start_of_day(date.fromisoformat(value))
    # fromisoformat before 3.11 does not accept a trailing Z
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def lookback_start(now: datetime, days: int) -> date:
    """First day of a window reaching `days` back from `now`"""
    return (now - timedelta(days=days)).date()
