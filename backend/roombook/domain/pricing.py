"""Gross prices in cents: booking windows and credit packages."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from ..core.enums import CreditUsageType
from ..core.exceptions import BusinessErrorCode, BusinessException
from .business_hours import duration_minutes, is_saturday, shift_block_for

if TYPE_CHECKING:
    from ..models.room import Room


def hourly_rate_for(room: "Room", start: datetime) -> int:
    if is_saturday(start) and room.saturday_hourly_rate_cents:
        return int(room.saturday_hourly_rate_cents)
    return int(room.hourly_rate_cents)


def calculate_gross_amount(room: "Room", start: datetime, end: datetime) -> int:
    """
    Price a window: the shift price for an exact shift block when the room has
    one, otherwise hourly rate times whole hours.
    """
    minutes = duration_minutes(start, end)
    if minutes <= 0 or minutes % 60:
        raise BusinessException(
            BusinessErrorCode.PRICING_ERROR,
            "Bookings are priced in whole hours.",
            details={"duration_minutes": minutes},
        )

    if room.shift_rate_cents and shift_block_for(start, end) is not None:
        total = int(room.shift_rate_cents)
    else:
        total = hourly_rate_for(room, start) * (minutes // 60)

    if total <= 0:
        raise BusinessException(
            BusinessErrorCode.PRICING_ERROR, details={"room_id": room.id, "total": total}
        )
    return total


def price_credit_package(room: "Room", usage_type: str, quantity: int) -> int:
    """
    Price ``quantity`` units of a credit package.

    Hourly packages are sold per hour at the weekday or Saturday hourly rate,
    shift packages per block at the room's shift rate.
    """
    if quantity <= 0:
        raise BusinessException(BusinessErrorCode.PRICING_ERROR, details={"quantity": quantity})

    if usage_type == CreditUsageType.HOURLY.value:
        unit = int(room.hourly_rate_cents)
    elif usage_type == CreditUsageType.SATURDAY_HOURLY.value:
        unit = int(room.saturday_hourly_rate_cents or room.hourly_rate_cents)
    elif usage_type in (CreditUsageType.SHIFT.value, CreditUsageType.SATURDAY_SHIFT.value):
        if not room.shift_rate_cents:
            raise BusinessException(
                BusinessErrorCode.PRICING_ERROR,
                "This room does not sell shift packages.",
                details={"room_id": room.id, "usage_type": usage_type},
            )
        unit = int(room.shift_rate_cents)
    else:
        raise BusinessException(BusinessErrorCode.PRICING_ERROR, details={"usage_type": usage_type})
    return unit * quantity
