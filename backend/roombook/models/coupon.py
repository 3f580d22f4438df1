# backend/roombook/models/coupon.py
"""Coupons and per-user coupon redemptions."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func
import ulid

from ..core.enums import CouponUsageStatus
from ..database import Base

COUPON_USAGE_UNIQUE_CONSTRAINT = "uq_coupon_usages_user_code_context"


class Coupon(Base):
    """
    Discount definition.

    ``value`` is cents for ``fixed`` and ``price_override`` coupons and a
    percentage for ``percent`` coupons.
    """

    __tablename__ = "coupons"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    code = Column(String(50), nullable=False, unique=True)
    discount_type = Column(String(20), nullable=False)
    value = Column(Integer, nullable=False)
    description = Column(String(255), nullable=False, default="")
    single_use_per_user = Column(Boolean, nullable=False, default=True)
    is_dev_coupon = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    min_amount_cents = Column(Integer, nullable=True)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Coupon {self.code} {self.discount_type}={self.value}>"


class CouponUsage(Base):
    """
    One redemption of a coupon by a user in a context.

    The unique key enforces single use. Restoring flips the row to RESTORED
    rather than deleting it, so the redemption history survives.
    """

    __tablename__ = "coupon_usages"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), nullable=False)
    coupon_code = Column(String(50), nullable=False)
    coupon_id = Column(String(26), ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    context = Column(String(20), nullable=False)
    booking_id = Column(String(26), nullable=True, index=True)
    purchase_id = Column(String(26), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=CouponUsageStatus.USED.value)
    restored_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "coupon_code", "context", name=COUPON_USAGE_UNIQUE_CONSTRAINT
        ),
        Index("ix_coupon_usages_code", "coupon_code"),
    )
