# backend/roombook/schemas/operations.py
"""Responses for the webhook and scheduled-cleanup endpoints."""

from typing import Optional

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel


class WebhookAckResponse(StrictModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    received: bool = True
    status: str
    duplicate: Optional[bool] = None
    event_id: Optional[str] = Field(None, alias="eventId")


class CleanupResponse(StrictModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    success: bool = True
    processed: int
    cancelled: int
    coupons_restored: int = Field(..., alias="couponsRestored")
    errors: int
