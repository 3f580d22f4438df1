# backend/roombook/routes/v1/bookings.py
"""
Customer booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService.

Endpoints:
    POST /with-credit - Create a booking paid with credits first, cash for the rest
    POST /{booking_id}/cancel-pending - Owner cancels a PENDING booking
"""

import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.params import Path

from ...api.dependencies import get_booking_service, require_verified_email
from ...auth import AuthContext, get_current_auth
from ...core.exceptions import DomainException
from ...integrations.asaas_client import PaymentCustomer
from ...schemas.booking import (
    BookingCreatedResponse,
    BookingCreateWithCredit,
    CancelBookingResponse,
)
from ...services.booking_service import BookingService, CreateBookingCommand

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@router.post(
    "/with-credit",
    response_model=BookingCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_booking_with_credit(
    booking_data: BookingCreateWithCredit = Body(...),
    auth: AuthContext = Depends(require_verified_email),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingCreatedResponse:
    """
    Create a booking funded by the caller's credits first.

    When credits do not cover the net price a checkout is created for the
    remainder and returned as ``paymentUrl``; the booking stays PENDING
    until the payment webhook confirms it.
    """
    customer = None
    if booking_data.customer is not None:
        customer = PaymentCustomer(
            name=booking_data.customer.name,
            email=str(booking_data.customer.email),
            cpf_cnpj=booking_data.customer.cpf_cnpj,
            phone=booking_data.customer.phone,
        )
    command = CreateBookingCommand(
        user_id=auth.user_id,
        room_id=booking_data.room_id,
        start_time=booking_data.start_time,
        end_time=booking_data.end_time,
        coupon_code=booking_data.coupon_code,
        payment_method=booking_data.payment_method,
        customer=customer,
        actor_role=auth.role,
    )
    try:
        created = booking_service.create_booking_with_credit(command)
    except DomainException as e:
        handle_domain_exception(e)

    return BookingCreatedResponse(
        booking_id=created.booking.id,
        status=created.booking.status,
        credits_used=created.credits_used,
        amount_to_pay=created.amount_to_pay,
        payment_url=created.payment_url,
        pix_payload=created.payment.pix_payload if created.payment else None,
    )


@router.post(
    "/{booking_id}/cancel-pending",
    response_model=CancelBookingResponse,
)
def cancel_pending_booking(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    auth: AuthContext = Depends(get_current_auth),
    booking_service: BookingService = Depends(get_booking_service),
) -> CancelBookingResponse:
    """Cancel the caller's own PENDING booking, giving back credits and coupon."""
    try:
        result = booking_service.cancel_pending_booking(auth.user_id, booking_id)
    except DomainException as e:
        handle_domain_exception(e)

    return CancelBookingResponse(
        booking_id=result.booking_id,
        already_cancelled=result.already_cancelled,
        credits_restored=result.credits_restored,
        coupon_restored=result.coupon_restored,
    )
