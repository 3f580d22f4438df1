# backend/roombook/repositories/audit_event_repository.py
"""
Repository helpers for audit_events persistence and querying.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from ..models.audit_event import AuditEvent


class AuditEventRepository:
    """Persist and query audit trail entries."""

    def __init__(self, db: Session):
        self.db = db

    def write(self, event: AuditEvent) -> None:
        """Persist a new audit row inside the active transaction."""
        self.db.add(event)
        self.db.flush()

    def list_for_target(
        self,
        target_id: str,
        *,
        action: Optional[str] = None,
        limit: int = 50,
    ) -> list[AuditEvent]:
        stmt: Select[tuple[AuditEvent]] = (
            select(AuditEvent)
            .where(AuditEvent.target_id == target_id)
            .order_by(AuditEvent.occurred_at.asc(), AuditEvent.id.asc())
            .limit(max(0, limit))
        )
        if action:
            stmt = stmt.where(AuditEvent.action == action)
        return list(self.db.execute(stmt).scalars().all())
