# backend/roombook/models/room.py
"""Room model: the bookable resource, with its price list and tier."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class Room(Base):
    """
    A time-boxed rentable room.

    Prices are integer minor-currency units. ``tier`` ranks rooms so that a
    credit restricted to tier T funds rooms of tier T or higher.
    """

    __tablename__ = "rooms"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(120), nullable=False)
    slug = Column(String(80), nullable=False, unique=True)
    tier = Column(Integer, nullable=False, default=1)
    hourly_rate_cents = Column(Integer, nullable=False)
    saturday_hourly_rate_cents = Column(Integer, nullable=True)
    shift_rate_cents = Column(Integer, nullable=True, comment="Price of a 4h shift block")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("hourly_rate_cents > 0", name="ck_rooms_hourly_rate_positive"),
        CheckConstraint("tier >= 1", name="ck_rooms_tier_positive"),
    )

    def __repr__(self) -> str:
        return f"<Room {self.slug} tier={self.tier}>"
