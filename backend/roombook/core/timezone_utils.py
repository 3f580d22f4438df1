"""
Timezone utilities for the booking engine.

Timestamps are stored in UTC; every calendar rule (weekday, business hours,
shift blocks) is evaluated in the business timezone.
"""

from datetime import datetime, timezone

import pytz

from .config import settings


def get_business_timezone() -> pytz.BaseTzInfo:
    return pytz.timezone(settings.business_timezone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (SQLite returns naive
    datetimes for timezone-aware columns).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_business_time(value: datetime) -> datetime:
    return ensure_utc(value).astimezone(get_business_timezone())


def business_datetime(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    """Build an aware UTC datetime from a wall-clock time in the business timezone."""
    local = get_business_timezone().localize(datetime(year, month, day, hour, minute))
    return local.astimezone(timezone.utc)
