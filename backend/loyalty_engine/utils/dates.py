"""Timezone helpers. All engine datetimes are aware and in UTC."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def delta_ms(later: datetime, earlier: datetime) -> float:
    """Signed difference in milliseconds."""
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() * 1000.0
