"""
Credit usage-type rules.

A credit's usage type restricts which days and durations it may fund:

    None (legacy)     any duration on a weekday; never Saturday, unless the
                      grant itself is a SATURDAY credit, which funds only Saturdays
    HOURLY            exactly one hour on a weekday
    SHIFT             a weekday shift block (08-12, 12-16, 16-20)
    SATURDAY_HOURLY   exactly one hour on Saturday
    SATURDAY_SHIFT    the Saturday shift block (08-12)

Sunday is always rejected.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from ..core.enums import CreditType, CreditUsageType
from .business_hours import (
    SATURDAY_SHIFT_BLOCKS,
    WEEKDAY_SHIFT_BLOCKS,
    duration_minutes,
    is_saturday,
    is_sunday,
    shift_block_for,
)

UsageCheck = Tuple[bool, Optional[str]]


def validate_credit_usage(
    usage_type: Optional[str],
    start: datetime,
    end: datetime,
    credit_type: Optional[str] = None,
) -> UsageCheck:
    """Return ``(True, None)`` when the credit may fund the window, else ``(False, code)``."""
    if is_sunday(start):
        return False, "SUNDAY_CLOSED"

    saturday = is_saturday(start)
    minutes = duration_minutes(start, end)
    block = shift_block_for(start, end)

    if usage_type is None:
        if credit_type == CreditType.SATURDAY.value:
            if not saturday:
                return False, "SATURDAY_CREDIT_WRONG_DAY"
            return True, None
        if saturday:
            return False, "SATURDAY_REQUIRES_SATURDAY_CREDIT"
        return True, None

    if usage_type == CreditUsageType.HOURLY.value:
        if saturday:
            return False, "HOURLY_NOT_ON_SATURDAY"
        if minutes != 60:
            return False, "HOURLY_MUST_BE_1H"
        return True, None

    if usage_type == CreditUsageType.SHIFT.value:
        if saturday:
            return False, "SHIFT_NOT_ON_SATURDAY"
        if block not in WEEKDAY_SHIFT_BLOCKS:
            return False, "SHIFT_INVALID_BLOCK"
        return True, None

    if usage_type == CreditUsageType.SATURDAY_HOURLY.value:
        if not saturday:
            return False, "SATURDAY_HOURLY_WRONG_DAY"
        if minutes != 60:
            return False, "SATURDAY_HOURLY_MUST_BE_1H"
        return True, None

    if usage_type == CreditUsageType.SATURDAY_SHIFT.value:
        if not saturday:
            return False, "SATURDAY_SHIFT_WRONG_DAY"
        if block not in SATURDAY_SHIFT_BLOCKS:
            return False, "SATURDAY_SHIFT_INVALID_BLOCK"
        return True, None

    return False, "UNKNOWN_USAGE_TYPE"


def is_credit_usable_for(
    usage_type: Optional[str],
    start: datetime,
    end: datetime,
    credit_type: Optional[str] = None,
) -> bool:
    ok, _ = validate_credit_usage(usage_type, start, end, credit_type)
    return ok
