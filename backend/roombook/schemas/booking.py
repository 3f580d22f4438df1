# backend/roombook/schemas/booking.py
"""
Booking request and response schemas.

Requests use snake_case field names. Responses are rendered in camelCase,
the shape the booking front end consumes.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import ConfigDict, EmailStr, Field, field_validator, model_validator

from ._strict_base import StrictModel, StrictRequestModel


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        # Naive times from clients are read as UTC.
        return value.replace(tzinfo=timezone.utc)
    return value


class PaymentCustomerIn(StrictRequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    cpf_cnpj: Optional[str] = Field(None, max_length=18)
    phone: Optional[str] = Field(None, max_length=20)


class BookingCreateWithCredit(StrictRequestModel):
    """Body of POST /bookings/with-credit."""

    room_id: str = Field(..., min_length=1, max_length=26)
    start_time: datetime
    end_time: datetime
    coupon_code: Optional[str] = Field(None, max_length=64)
    payment_method: Literal["PIX", "CARD"] = "PIX"
    customer: Optional[PaymentCustomerIn] = None

    @field_validator("payment_method", mode="before")
    @classmethod
    def _upper_method(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @field_validator("coupon_code", mode="before")
    @classmethod
    def _blank_coupon_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _require_aware(value)

    @model_validator(mode="after")
    def _ordered(self) -> "BookingCreateWithCredit":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BookingCreatedResponse(StrictModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    success: bool = True
    booking_id: str = Field(..., alias="bookingId")
    status: str
    credits_used: int = Field(..., alias="creditsUsed")
    amount_to_pay: int = Field(..., alias="amountToPay")
    payment_url: Optional[str] = Field(None, alias="paymentUrl")
    pix_payload: Optional[str] = Field(None, alias="pixPayload")


class CancelBookingResponse(StrictModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    success: bool = True
    booking_id: str = Field(..., alias="bookingId")
    already_cancelled: bool = Field(False, alias="alreadyCancelled")
    credits_restored: int = Field(0, alias="creditsRestored")
    coupon_restored: bool = Field(False, alias="couponRestored")


class AdminBookingUpdate(StrictRequestModel):
    """Body of PATCH /admin/bookings/{id}. Every field is optional."""

    status: Optional[Literal["PENDING", "CONFIRMED", "CANCELLED", "REFUNDED"]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _upper_status(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _require_aware(value) if value is not None else None

    @model_validator(mode="after")
    def _ordered(self) -> "AdminBookingUpdate":
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BookingResponse(StrictModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, from_attributes=True)

    id: str
    room_id: str = Field(..., alias="roomId")
    user_id: str = Field(..., alias="userId")
    start_time: datetime = Field(..., alias="startTime")
    end_time: datetime = Field(..., alias="endTime")
    status: str
    financial_status: str = Field(..., alias="financialStatus")
    gross_amount: int = Field(..., alias="grossAmount")
    discount_amount: int = Field(..., alias="discountAmount")
    net_amount: int = Field(..., alias="netAmount")
    credits_used: int = Field(..., alias="creditsUsed")
    amount_to_pay: int = Field(..., alias="amountToPay")
    amount_paid: int = Field(..., alias="amountPaid")
    refunded_amount: int = Field(0, alias="refundedAmount")
    coupon_code: Optional[str] = Field(None, alias="couponCode")
    cancel_reason: Optional[str] = Field(None, alias="cancelReason")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
