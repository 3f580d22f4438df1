"""Service for appending booking, credit and payment audit events."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping

from sqlalchemy.orm import Session

from ..core.enums import AuditAction
from ..core.request_context import get_request_id
from ..models.audit_event import AuditEvent
from ..repositories.factory import RepositoryFactory


class AuditService:
    """
    Audit sink.

    ``record`` writes into the caller's transaction: an audit row exists if
    and only if the state change it describes was committed.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repository = RepositoryFactory.create_audit_event_repository(db)

    def record(
        self,
        action: AuditAction | str,
        *,
        actor_id: str | None,
        target_id: str | None,
        metadata: Mapping[str, Any] | None = None,
        target_type: str = "booking",
        request_id: str | None = None,
    ) -> AuditEvent:
        """Create an audit entry."""
        event = AuditEvent(
            action=action.value if isinstance(action, AuditAction) else str(action),
            actor_id=actor_id,
            target_type=target_type,
            target_id=target_id,
            request_id=request_id or get_request_id(),
            details=_sanitize_metadata(metadata or {}),
            occurred_at=datetime.now(timezone.utc),
        )
        self.repository.write(event)
        return event

    def list_for_booking(self, booking_id: str, action: str | None = None) -> list[AuditEvent]:
        return self.repository.list_for_target(booking_id, action=action)


def _sanitize_metadata(value: Any) -> Any:
    """Make metadata JSON-safe (enums, datetimes, nested containers)."""
    if isinstance(value, Mapping):
        return {str(k): _sanitize_metadata(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_sanitize_metadata(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value
