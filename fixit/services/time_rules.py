"""
Time helpers for SLA and window calculations.
All stored timestamps are naive UTC; display conversion uses the campus timezone.
"""
from datetime import datetime, timedelta
from typing import Optional
import pytz


def utcnow() -> datetime:
    return datetime.utcnow()


def as_naive_utc(dt: datetime) -> datetime:
    """Normalize aware datetimes to naive UTC so they compare with stored values."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def minutes_since(dt: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole minutes elapsed between dt and now, floored.

    Args:
        dt: Start time (UTC, naive or aware)
        now: Reference time (defaults to current UTC time)

    Returns:
        Elapsed minutes, never negative
    """
    now = as_naive_utc(now or utcnow())
    elapsed = (now - as_naive_utc(dt)).total_seconds() // 60
    return max(int(elapsed), 0)


def window_start(now: datetime, days: int = 0, hours: int = 0) -> datetime:
    return as_naive_utc(now) - timedelta(days=days, hours=hours)


def utc_to_local(utc_datetime: datetime, timezone_str: str) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (naive or aware)
        timezone_str: Timezone string (e.g., "America/New_York")

    Returns:
        Local datetime (timezone-aware)
    """
    try:
        tz = pytz.timezone(timezone_str)
        if utc_datetime.tzinfo is None:
            utc_dt = utc_datetime.replace(tzinfo=pytz.UTC)
        else:
            utc_dt = utc_datetime.astimezone(pytz.UTC)
        return utc_dt.astimezone(tz)
    except pytz.UnknownTimeZoneError:
        return utc_datetime


def format_local(utc_datetime: Optional[datetime], timezone_str: str) -> str:
    if utc_datetime is None:
        return "-"
    return utc_to_local(utc_datetime, timezone_str).strftime("%b %d, %Y %I:%M %p %Z")
