"""
Timezone-aware datetime utilities for PromoPal.

All helpers return timezone-aware datetime objects in UTC. Values read back
from SQLite come out naive, so anything compared against "now" should be
passed through ensure_utc first.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def utc_from_timestamp(timestamp: Union[int, float]) -> datetime:
    """Convert a Unix timestamp (seconds) to a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    Naive datetimes are assumed to already be UTC. None passes through so
    nullable columns can be normalized without a guard at every call site.

    Example:
        >>> ensure_utc(datetime(2025, 1, 1, 12, 0, 0)).tzinfo
        datetime.timezone.utc
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    if dt.tzinfo != timezone.utc:
        return dt.astimezone(timezone.utc)
    return dt


def utc_days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Get the UTC datetime N days before ``now`` (defaults to the current time)."""
    return ensure_utc(now or utc_now()) - timedelta(days=days)


def utc_seconds_from_now(seconds: Union[int, float], now: Optional[datetime] = None) -> datetime:
    """Absolute UTC timestamp ``seconds`` after ``now``. Used to normalize relative token lifetimes."""
    return ensure_utc(now or utc_now()) + timedelta(seconds=seconds)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string from an external API into an aware UTC datetime.

    Accepts the trailing ``Z`` form returned by most provider APIs. Returns
    None for empty or unparseable input.
    """
    if not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
    except (TypeError, ValueError):
        return None
