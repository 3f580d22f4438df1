"""
Business calendar for the rooms.

All rules are evaluated in the business timezone:

- Monday to Friday: 08:00 - 20:00
- Saturday: 08:00 - 12:00
- Sunday: closed

Shift blocks are fixed 4-hour windows: 08-12, 12-16 and 16-20 on weekdays,
08-12 on Saturday.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Tuple

from ..core.exceptions import BusinessErrorCode, BusinessException
from ..core.timezone_utils import ensure_utc, to_business_time

SATURDAY = 5
SUNDAY = 6

WEEKDAY_HOURS: Tuple[int, int] = (8, 20)
SATURDAY_HOURS: Tuple[int, int] = (8, 12)

SHIFT_DURATION_HOURS = 4
WEEKDAY_SHIFT_BLOCKS: Tuple[Tuple[int, int], ...] = ((8, 12), (12, 16), (16, 20))
SATURDAY_SHIFT_BLOCKS: Tuple[Tuple[int, int], ...] = ((8, 12),)


def is_saturday(value: datetime) -> bool:
    return to_business_time(value).weekday() == SATURDAY


def is_sunday(value: datetime) -> bool:
    return to_business_time(value).weekday() == SUNDAY


def business_hours_for(value: datetime) -> Optional[Tuple[int, int]]:
    """Opening hours for the local day of ``value``; None when closed."""
    weekday = to_business_time(value).weekday()
    if weekday == SUNDAY:
        return None
    if weekday == SATURDAY:
        return SATURDAY_HOURS
    return WEEKDAY_HOURS


def duration_minutes(start: datetime, end: datetime) -> int:
    return int((ensure_utc(end) - ensure_utc(start)).total_seconds() // 60)


def local_hours(start: datetime, end: datetime) -> Tuple[int, int]:
    """Local (start_hour, end_hour); an end at local midnight reads as 24."""
    local_start = to_business_time(start)
    local_end = to_business_time(end)
    end_hour = local_end.hour
    if end_hour == 0 and local_end.date() > local_start.date():
        end_hour = 24
    return local_start.hour, end_hour


def shift_block_for(start: datetime, end: datetime) -> Optional[Tuple[int, int]]:
    """Return the shift block exactly covered by ``[start, end)``, if any."""
    if duration_minutes(start, end) != SHIFT_DURATION_HOURS * 60:
        return None
    local_start = to_business_time(start)
    if local_start.minute != 0:
        return None
    weekday = local_start.weekday()
    if weekday == SUNDAY:
        return None
    blocks = SATURDAY_SHIFT_BLOCKS if weekday == SATURDAY else WEEKDAY_SHIFT_BLOCKS
    window = local_hours(start, end)
    return window if window in blocks else None


def validate_business_hours(start: datetime, end: datetime) -> None:
    """Raise BOOKING_OUTSIDE_HOURS unless the window fits one open day on the hour."""
    if ensure_utc(end) <= ensure_utc(start):
        raise BusinessException(
            BusinessErrorCode.VALIDATION_ERROR, "End time must be after start time."
        )
    local_start = to_business_time(start)
    local_end = to_business_time(end)
    hours = business_hours_for(start)
    if hours is None:
        raise BusinessException(
            BusinessErrorCode.BOOKING_OUTSIDE_HOURS,
            "The space is closed on Sundays.",
            details={"reason": "SUNDAY_CLOSED"},
        )
    if local_start.minute or local_start.second or local_end.minute or local_end.second:
        raise BusinessException(
            BusinessErrorCode.BOOKING_OUTSIDE_HOURS,
            "Bookings must start and end on the hour.",
            details={"reason": "NOT_ON_THE_HOUR"},
        )
    if local_start.date() != local_end.date():
        raise BusinessException(
            BusinessErrorCode.BOOKING_OUTSIDE_HOURS,
            "Bookings must start and end on the same day.",
            details={"reason": "CROSSES_DAY"},
        )
    open_hour, close_hour = hours
    if local_start.hour < open_hour or local_end.hour > close_hour:
        raise BusinessException(
            BusinessErrorCode.BOOKING_OUTSIDE_HOURS,
            f"Opening hours for this day are {open_hour:02d}:00-{close_hour:02d}:00.",
            details={"reason": "OUTSIDE_HOURS", "open": open_hour, "close": close_hour},
        )


def validate_lead_time(
    start: datetime,
    *,
    now: datetime,
    requires_payment: bool,
    min_advance_minutes: int,
) -> None:
    """Start must be in the future; a cash payment needs ``min_advance_minutes`` of slack."""
    start_utc = ensure_utc(start)
    now_utc = ensure_utc(now)
    if start_utc <= now_utc:
        raise BusinessException(
            BusinessErrorCode.INSUFFICIENT_TIME,
            "Bookings cannot start in the past.",
            details={"reason": "IN_THE_PAST"},
        )
    if requires_payment and start_utc < now_utc + timedelta(minutes=min_advance_minutes):
        raise BusinessException(
            BusinessErrorCode.INSUFFICIENT_TIME,
            f"Bookings with payment need at least {min_advance_minutes} minutes of notice.",
            details={"min_advance_minutes": min_advance_minutes},
        )


def validate_booking_window(
    start: datetime,
    end: datetime,
    *,
    now: datetime,
    window_days: int,
) -> None:
    """Hourly bookings may only be placed ``window_days`` ahead; shifts are exempt."""
    if shift_block_for(start, end) is not None:
        return
    last_day = to_business_time(now).date() + timedelta(days=window_days)
    if to_business_time(start).date() > last_day:
        raise BusinessException(
            BusinessErrorCode.BOOKING_WINDOW_EXCEEDED,
            f"Hourly bookings can be made at most {window_days} days ahead.",
            details={"max_date": last_day.isoformat(), "window_days": window_days},
        )
