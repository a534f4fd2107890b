"""
Datetime utilities.

Provides timezone-aware datetime functions.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.

    Returns:
        Current datetime in UTC with timezone awareness
    """
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """
    Attach UTC to naive datetimes.

    Some drivers (SQLite) return naive values for timezone-aware columns.

    Args:
        value: Datetime read from the database

    Returns:
        Timezone-aware datetime
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def seconds_since(value: datetime | None, now: datetime | None = None) -> float | None:
    """
    Seconds elapsed since `value`.

    Args:
        value: Past timestamp, or None
        now: Reference time (defaults to utc_now())

    Returns:
        Elapsed seconds, or None if `value` is None
    """
    if value is None:
        return None
    now = now or utc_now()
    return (now - ensure_aware(value)).total_seconds()
