# backend/roombook/models/payment.py
"""
External payment records.

Each row mirrors one charge at the payment gateway. ``idempotency_key``
(``<entityKind>:<entityId>:<method>``) is unique, and at most one active
(PENDING/APPROVED/IN_PROCESS) payment may exist per booking.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
import ulid

from ..core.enums import PaymentStatus
from ..database import Base

PAYMENT_IDEMPOTENCY_CONSTRAINT = "uq_payments_idempotency_key"
PAYMENT_ACTIVE_BOOKING_INDEX = "uq_payments_active_booking"

_ACTIVE_PAYMENT_PREDICATE = text("status IN ('PENDING', 'APPROVED', 'IN_PROCESS')")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, index=True)
    purchase_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, index=True)
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )
    idempotency_key: Mapped[str] = mapped_column(String(120), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    external_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pix_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refunded_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_now_utc
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name=PAYMENT_IDEMPOTENCY_CONSTRAINT),
        Index(
            PAYMENT_ACTIVE_BOOKING_INDEX,
            "booking_id",
            unique=True,
            postgresql_where=_ACTIVE_PAYMENT_PREDICATE,
            sqlite_where=_ACTIVE_PAYMENT_PREDICATE,
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status in (
            PaymentStatus.PENDING.value,
            PaymentStatus.APPROVED.value,
            PaymentStatus.IN_PROCESS.value,
        )

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.idempotency_key} {self.status}>"
