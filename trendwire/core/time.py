"""Time and timezone utilities."""

from datetime import datetime, timezone, timedelta
from typing import Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def normalize_timezone(dt: datetime, target_tz: timezone = timezone.utc) -> datetime:
    """
    Normalize datetime to target timezone.

    Args:
        dt: Input datetime
        target_tz: Target timezone (default UTC)

    Returns:
        Datetime in target timezone
    """
    if dt.tzinfo is None:
        # Assume UTC if no timezone
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(target_tz)


def to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize to UTC, passing None through."""
    if dt is None:
        return None
    return normalize_timezone(dt)


def get_current_utc_time() -> datetime:
    """Get current time in UTC."""
    return datetime.now(timezone.utc)


def get_age_hours(dt: datetime, now: Optional[datetime] = None) -> float:
    """Get age of datetime in hours from now."""
    now = now or get_current_utc_time()
    delta = normalize_timezone(now) - normalize_timezone(dt)
    return delta.total_seconds() / 3600


def hours_from_now(hours: float, now: Optional[datetime] = None) -> datetime:
    """Get the UTC datetime `hours` after now."""
    now = now or get_current_utc_time()
    return normalize_timezone(now) + timedelta(hours=hours)


def sort_timestamp(dt: Optional[datetime]) -> float:
    """POSIX timestamp for ordering; missing times sort as the epoch."""
    if dt is None:
        return 0.0
    return normalize_timezone(dt).timestamp()
