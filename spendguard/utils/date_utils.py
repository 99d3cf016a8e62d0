"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def add_days(from_time: datetime, days: int) -> datetime:
    """Shift a timestamp forward by whole days"""
    return from_time + timedelta(days=days)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
