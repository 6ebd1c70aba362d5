"""Deployment calendar: expiry checks and sale analytics use settings.TIMEZONE."""
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from pharmacy.core.config import settings

LOCAL_TZ = ZoneInfo(settings.TIMEZONE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_local(value: datetime) -> datetime:
    """Convert a stored timestamp to the deployment zone.

    SQLite hands back naive datetimes; they were written as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(LOCAL_TZ)


def local_today() -> date:
    return datetime.now(LOCAL_TZ).date()


def local_day_bounds(day: date):
    """UTC [start, end) of a calendar day in the deployment zone."""
    start = datetime(day.year, day.month, day.day, tzinfo=LOCAL_TZ)
    end = datetime.fromordinal(day.toordinal() + 1).replace(tzinfo=LOCAL_TZ)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
