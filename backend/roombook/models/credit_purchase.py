# backend/roombook/models/credit_purchase.py
"""
Prepaid credit package bought through the payment gateway.

The purchase is priced and recorded PENDING before the charge exists; the
credit itself is only granted once the payment is confirmed, and
``credit_id`` then points at it.
"""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..core.enums import PurchaseStatus
from ..database import Base

DEFAULT_VALIDITY_DAYS = 365


class CreditPurchase(Base):
    __tablename__ = "credit_purchases"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), nullable=False, index=True)
    room_id = Column(String(26), ForeignKey("rooms.id"), nullable=False)
    usage_type = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    # Money (integer cents). credit_amount is the balance granted, the
    # gross price; the coupon only lowers what is charged.
    credit_amount = Column(Integer, nullable=False)
    gross_amount = Column(Integer, nullable=False)
    discount_amount = Column(Integer, nullable=False, default=0)
    net_amount = Column(Integer, nullable=False)
    refunded_amount = Column(Integer, nullable=False, default=0)
    payment_method = Column(String(10), nullable=False)

    coupon_code = Column(String(50), nullable=True)
    coupon_snapshot = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True
    )

    status = Column(String(20), nullable=False, default=PurchaseStatus.PENDING.value, index=True)
    validity_days = Column(Integer, nullable=False, default=DEFAULT_VALIDITY_DAYS)
    credit_id = Column(String(26), ForeignKey("credits.id"), nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("credit_amount > 0", name="ck_credit_purchases_credit_positive"),
        CheckConstraint("net_amount >= 0", name="ck_credit_purchases_net_non_negative"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == PurchaseStatus.PENDING.value

    def __repr__(self) -> str:
        return f"<CreditPurchase {self.id} {self.usage_type}x{self.quantity} {self.status}>"
