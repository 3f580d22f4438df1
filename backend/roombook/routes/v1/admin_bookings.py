# backend/roombook/routes/v1/admin_bookings.py
"""
Admin booking routes - API v1

    PATCH /admin/bookings/{booking_id} - status / time changes through the state machine
    POST /admin/bookings/{booking_id}/cancel - administrative cancellation
"""

import logging

from fastapi import APIRouter, Body, Depends
from fastapi.params import Path

from ...api.dependencies import get_booking_service, require_admin
from ...auth import AuthContext
from ...core.exceptions import DomainException
from ...schemas.booking import AdminBookingUpdate, BookingResponse, CancelBookingResponse
from ...services.booking_service import BookingService
from .bookings import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-bookings-v1"])


@router.patch("/{booking_id}", response_model=BookingResponse)
def admin_update_booking(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    update: AdminBookingUpdate = Body(...),
    admin: AuthContext = Depends(require_admin),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Patch a booking's status or time.

    Cancellation is refused here; use the cancel endpoint. A change the
    lifecycle does not allow is audited and answered with 409.
    """
    try:
        booking = booking_service.admin_update_booking(
            admin.user_id,
            booking_id,
            status=update.status,
            start_time=update.start_time,
            end_time=update.end_time,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=CancelBookingResponse)
def admin_cancel_booking(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    admin: AuthContext = Depends(require_admin),
    booking_service: BookingService = Depends(get_booking_service),
) -> CancelBookingResponse:
    try:
        result = booking_service.admin_cancel_booking(admin.user_id, booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return CancelBookingResponse(
        booking_id=result.booking_id,
        already_cancelled=result.already_cancelled,
        credits_restored=result.credits_restored,
        coupon_restored=result.coupon_restored,
    )
