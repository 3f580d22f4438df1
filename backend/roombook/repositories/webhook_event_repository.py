"""Repository helpers for the webhook event ledger."""

from __future__ import annotations

import logging
from typing import cast

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import WebhookEventStatus
from ..core.exceptions import RepositoryException
from ..models.webhook_event import WebhookEvent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = (WebhookEventStatus.RECEIVED.value, WebhookEventStatus.FAILED.value)


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for webhook ledger queries."""

    constraint_signatures = {
        "uq_webhook_events_source_event_id": "webhook_events.source, webhook_events.event_id",
    }

    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def find_by_source_and_event_id(self, source: str, event_id: str) -> WebhookEvent | None:
        """Find webhook event by source and external event ID."""
        try:
            result = (
                self.db.query(WebhookEvent)
                .filter(WebhookEvent.source == source, WebhookEvent.event_id == event_id)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load webhook event %s: %s", event_id, str(exc))
            raise RepositoryException("Failed to load webhook event") from exc
        return cast(WebhookEvent | None, result)

    def claim_for_processing(self, webhook_event_id: str) -> bool:
        """
        RECEIVED/FAILED -> PROCESSING in one guarded UPDATE.

        Exactly one concurrent delivery of the same event wins the claim.
        """
        try:
            result = self.db.execute(
                update(WebhookEvent)
                .where(
                    WebhookEvent.id == webhook_event_id,
                    WebhookEvent.status.in_(CLAIMABLE_STATUSES),
                )
                .values(
                    status=WebhookEventStatus.PROCESSING.value,
                    attempts=WebhookEvent.attempts + 1,
                    processing_error=None,
                    processed_at=None,
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to claim webhook event %s: %s", webhook_event_id, str(exc))
            raise RepositoryException("Failed to claim webhook event") from exc
        self.expire_cached(webhook_event_id)
        return bool(result.rowcount)
