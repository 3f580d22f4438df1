# backend/roombook/models/audit_event.py
"""Append-only audit trail for booking, credit and payment state changes."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base


def _now_utc() -> datetime:
    """Return timezone-aware UTC timestamp for defaults."""
    return datetime.now(timezone.utc)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    action = Column(String(50), nullable=False)
    actor_id = Column(String(64), nullable=True)
    target_type = Column(String(30), nullable=False, default="booking")
    target_id = Column(String(64), nullable=True)
    request_id = Column(String(64), nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column(
        "metadata",
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=True,
    )
    occurred_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_audit_events_target", "target_type", "target_id"),
        Index("ix_audit_events_action", "action"),
    )
