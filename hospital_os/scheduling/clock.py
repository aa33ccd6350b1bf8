"""Timezone helpers for clinic-local slot times."""

from datetime import date, datetime, time, tzinfo
from zoneinfo import ZoneInfo


def clinic_tz(name: str) -> tzinfo:
    return ZoneInfo(name)


def slot_at(day: date, hour: int, tz: tzinfo) -> datetime:
    """Return ``day`` at ``hour:00`` in the clinic timezone."""
    return datetime.combine(day, time(hour=hour), tzinfo=tz)


def ensure_aware(value: datetime, tz: tzinfo) -> datetime:
    """Attach *tz* to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value
