# backend/roombook/models/booking.py
"""
Booking model.

A booking reserves a room for the half-open interval ``[start_time, end_time)``.
Bookings are never deleted: cancellation and refunds are status changes, and
the status column is only written through the booking state machine.

On PostgreSQL the ``bookings_no_overlap`` exclusion constraint is the durable
guarantee against overbooking. The turnaround buffer is enforced by the
application pre-check; the constraint guards raw interval overlap.
"""

from datetime import datetime, timezone
import logging
from typing import Dict, List

from sqlalchemy import (
    DDL,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..core.enums import BookingStatus, FinancialStatus
from ..database import Base

logger = logging.getLogger(__name__)

BOOKING_OVERLAP_CONSTRAINT = "bookings_no_overlap"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    room_id = Column(String(26), ForeignKey("rooms.id"), nullable=False)
    user_id = Column(String(26), nullable=False, index=True)

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    financial_status = Column(
        String(20), nullable=False, default=FinancialStatus.PENDING_PAYMENT.value
    )

    # Money (integer cents)
    gross_amount = Column(Integer, nullable=False)
    discount_amount = Column(Integer, nullable=False, default=0)
    net_amount = Column(Integer, nullable=False)
    credits_used = Column(Integer, nullable=False, default=0)
    amount_to_pay = Column(Integer, nullable=False, default=0)
    amount_paid = Column(Integer, nullable=False, default=0)
    refunded_amount = Column(Integer, nullable=False, default=0)
    payment_method = Column(String(10), nullable=True)

    # Credit consumption: ids plus the exact cents taken from each
    credit_ids = Column(JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True)
    credit_allocations = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True
    )

    coupon_code = Column(String(50), nullable=True)
    coupon_snapshot = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True
    )

    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Audit
    cancel_reason = Column(String(50), nullable=True)
    cancel_source = Column(String(20), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    room = relationship("Room", lazy="select")

    __table_args__ = (
        Index("ix_bookings_room_start", "room_id", "start_time"),
        Index("ix_bookings_status_expires", "status", "expires_at"),
        CheckConstraint("end_time > start_time", name="ck_bookings_interval"),
        CheckConstraint(
            "net_amount = gross_amount - discount_amount", name="ck_bookings_net_amount"
        ),
        CheckConstraint(
            "gross_amount >= 0 AND discount_amount >= 0 AND credits_used >= 0 "
            "AND amount_to_pay >= 0 AND amount_paid >= 0",
            name="ck_bookings_amounts_non_negative",
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.id} room={self.room_id} {self.status}>"

    @property
    def consumed_credit_ids(self) -> List[str]:
        return list(self.credit_ids or [])

    @property
    def consumed_allocations(self) -> Dict[str, int]:
        return {str(k): int(v) for k, v in (self.credit_allocations or {}).items()}


# PostgreSQL-only durable overlap guard; SQLite relies on the locked re-check.
event.listen(
    Booking.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE bookings ADD CONSTRAINT {BOOKING_OVERLAP_CONSTRAINT} "
        "EXCLUDE USING gist (room_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (status IN ('PENDING', 'CONFIRMED'))"
    ).execute_if(dialect="postgresql"),
)
