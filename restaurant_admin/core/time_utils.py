from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_now(tz_name: str) -> datetime:
    return datetime.now(ZoneInfo(tz_name))


def localize(value: datetime, tz_name: str) -> datetime:
    """Attach ``tz_name`` to naive wall-clock values; convert aware ones into it."""
    zone = ZoneInfo(tz_name)
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value.astimezone(zone)


def start_of_day(as_of: datetime, tz_name: str) -> datetime:
    """Midnight of ``as_of``'s business day in ``tz_name``, returned in UTC."""
    local = localize(as_of, tz_name)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)
