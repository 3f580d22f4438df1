"""Ledger of inbound gateway webhooks: dedupe, claim, outcome."""

from __future__ import annotations

from datetime import datetime, timezone
import time
from typing import Any

from sqlalchemy.orm import Session

from ..core.enums import WebhookEventStatus
from ..core.exceptions import UniqueViolation
from ..models.webhook_event import WebhookEvent
from ..repositories.factory import RepositoryFactory
from ..repositories.webhook_event_repository import WebhookEventRepository
from .base import BaseService

# Statuses that mean a delivery needs no further work.
SETTLED_STATUSES = frozenset(
    {
        WebhookEventStatus.PROCESSED.value,
        WebhookEventStatus.IGNORED_NOT_FOUND.value,
        WebhookEventStatus.IGNORED_NO_REFERENCE.value,
        WebhookEventStatus.IGNORED_EVENT_TYPE.value,
    }
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookLedgerService(BaseService):
    """Business logic for webhook ledger entries. Never commits."""

    def __init__(self, db: Session, repository: WebhookEventRepository | None = None) -> None:
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_webhook_event_repository(db)

    @BaseService.measure_operation("webhook_ledger.log_received")
    def log_received(
        self,
        *,
        source: str,
        event_type: str,
        event_id: str,
        payload: dict[str, Any],
    ) -> WebhookEvent:
        """
        Record a delivery before processing.

        A redelivery of a known ``(source, event_id)`` returns the existing
        row, including when a concurrent worker inserted it first.
        """
        existing = self.repository.find_by_source_and_event_id(source, event_id)
        if existing is not None:
            return existing
        try:
            return self.repository.create(
                source=source,
                event_type=event_type or "unknown",
                event_id=event_id,
                payload=payload,
                status=WebhookEventStatus.RECEIVED.value,
                received_at=_now_utc(),
                attempts=0,
            )
        except UniqueViolation:
            existing = self.repository.find_by_source_and_event_id(source, event_id)
            if existing is None:
                raise
            return existing

    @staticmethod
    def is_settled(event: WebhookEvent) -> bool:
        return event.status in SETTLED_STATUSES

    @BaseService.measure_operation("webhook_ledger.mark_processing")
    def mark_processing(self, event: WebhookEvent) -> bool:
        """Attempt to claim an event for processing."""
        return self.repository.claim_for_processing(event.id)

    @BaseService.measure_operation("webhook_ledger.mark_processed")
    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        duration_ms: int | None = None,
        status: WebhookEventStatus = WebhookEventStatus.PROCESSED,
    ) -> WebhookEvent:
        """Mark webhook as handled (processed or deliberately ignored)."""
        event.status = status.value
        event.processed_at = _now_utc()
        event.related_entity_type = related_entity_type
        event.related_entity_id = related_entity_id
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.mark_failed")
    def mark_failed(
        self,
        event: WebhookEvent,
        *,
        error: str,
        duration_ms: int | None = None,
    ) -> WebhookEvent:
        """Mark webhook as failed; a redelivery may claim it again."""
        event.status = WebhookEventStatus.FAILED.value
        event.processing_error = error[:2000]
        event.processed_at = _now_utc()
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event

    @staticmethod
    def elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)
