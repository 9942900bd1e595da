"""Time helpers.

Instants are stored as naive UTC datetimes (SQLite has no timezone type).
Wall-clock arithmetic goes through ``to_local``/``from_local`` with zoneinfo.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_zone(name: str | None, default: str = "UTC") -> ZoneInfo:
    try:
        return ZoneInfo(name or default)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(default)


def to_utc_naive(value: datetime) -> datetime:
    """Normalise an aware or naive-UTC datetime to naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_local(value: datetime, zone: ZoneInfo) -> datetime:
    return to_utc_naive(value).replace(tzinfo=timezone.utc).astimezone(zone)


def from_local(value: datetime, zone: ZoneInfo) -> datetime:
    """Interpret a wall-clock datetime in ``zone`` and return naive UTC."""
    return to_utc_naive(value.replace(tzinfo=zone))
