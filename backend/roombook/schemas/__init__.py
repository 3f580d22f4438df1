# backend/roombook/schemas/__init__.py
"""Pydantic request/response schemas for the HTTP API."""

from .booking import (
    AdminBookingUpdate,
    BookingCreatedResponse,
    BookingCreateWithCredit,
    BookingResponse,
    CancelBookingResponse,
    PaymentCustomerIn,
)
from .credit import CreditPurchaseCreate, CreditPurchaseResponse
from .operations import CleanupResponse, WebhookAckResponse

__all__ = [
    "AdminBookingUpdate",
    "BookingCreateWithCredit",
    "BookingCreatedResponse",
    "BookingResponse",
    "CancelBookingResponse",
    "CleanupResponse",
    "CreditPurchaseCreate",
    "CreditPurchaseResponse",
    "PaymentCustomerIn",
    "WebhookAckResponse",
]
