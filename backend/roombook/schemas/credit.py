# backend/roombook/schemas/credit.py
"""Credit package purchase schemas."""

from typing import Literal, Optional

from pydantic import ConfigDict, Field, field_validator

from ._strict_base import StrictModel, StrictRequestModel
from .booking import PaymentCustomerIn


class CreditPurchaseCreate(StrictRequestModel):
    """Body of POST /credits/purchase."""

    room_id: str = Field(..., min_length=1, max_length=26)
    usage_type: Literal["HOURLY", "SHIFT", "SATURDAY_HOURLY", "SATURDAY_SHIFT"] = "HOURLY"
    quantity: int = Field(1, ge=1, le=20)
    coupon_code: Optional[str] = Field(None, max_length=64)
    payment_method: Literal["PIX", "CARD"] = "PIX"
    customer: Optional[PaymentCustomerIn] = None

    @field_validator("usage_type", "payment_method", mode="before")
    @classmethod
    def _upper(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @field_validator("coupon_code", mode="before")
    @classmethod
    def _blank_coupon_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class CreditPurchaseResponse(StrictModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    success: bool = True
    purchase_id: str = Field(..., alias="purchaseId")
    status: str
    credit_amount: int = Field(..., alias="creditAmount")
    amount_to_pay: int = Field(..., alias="amountToPay")
    payment_url: Optional[str] = Field(None, alias="paymentUrl")
    pix_payload: Optional[str] = Field(None, alias="pixPayload")
