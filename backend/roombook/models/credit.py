# backend/roombook/models/credit.py
"""
Prepaid credit grant.

A user's balance is spread over several grants, each with its own remaining
amount, room/tier restriction, usage-type restriction and expiry. Only the
credit ledger service writes ``remaining_amount``.
"""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.sql import func
import ulid

from ..core.enums import CreditStatus, CreditType
from ..database import Base


class Credit(Base):
    __tablename__ = "credits"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), nullable=False, index=True)
    room_id = Column(String(26), ForeignKey("rooms.id"), nullable=True)
    tier = Column(Integer, nullable=True)
    usage_type = Column(String(20), nullable=True)
    credit_type = Column("type", String(20), nullable=False, default=CreditType.MANUAL.value)

    amount = Column(Integer, nullable=False)
    remaining_amount = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=CreditStatus.CONFIRMED.value)
    source = Column(String(30), nullable=True, comment="PURCHASE, CANCELLATION, ADMIN, ...")

    expires_at = Column(DateTime(timezone=True), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("ix_credits_user_status_expires", "user_id", "status", "expires_at"),
        CheckConstraint(
            "remaining_amount >= 0 AND remaining_amount <= amount",
            name="ck_credits_remaining_bounds",
        ),
        CheckConstraint("amount > 0", name="ck_credits_amount_positive"),
    )

    @property
    def consumed_amount(self) -> int:
        return int(self.amount) - int(self.remaining_amount)

    def __repr__(self) -> str:
        return f"<Credit {self.id} {self.remaining_amount}/{self.amount} {self.usage_type}>"
