"""Booking notifications: best effort, after commit, never fatal."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from ..core.enums import ContingencyFlag
from ..models.booking import Booking
from .base import BaseService
from .contingency_service import ContingencyService

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    def send_booking_confirmation(self, booking: Booking) -> None:
        ...


class LoggingNotificationSender:
    """Default sender: records the confirmation in the application log."""

    def send_booking_confirmation(self, booking: Booking) -> None:
        logger.info(
            "Booking confirmation for %s",
            booking.id,
            extra={
                "evt": "booking_confirmation",
                "booking_id": booking.id,
                "user_id": booking.user_id,
            },
        )


class NotificationService(BaseService):
    def __init__(
        self,
        db: Session,
        sender: Optional[NotificationSender] = None,
        contingency: Optional[ContingencyService] = None,
    ):
        super().__init__(db)
        self.sender: NotificationSender = sender or LoggingNotificationSender()
        self.contingency = contingency or ContingencyService(db)

    def send_booking_confirmation(self, booking: Booking) -> bool:
        """Returns True when the sender accepted the message."""
        if self.contingency.is_enabled(ContingencyFlag.DISABLE_EMAILS):
            self.logger.info(
                "E-mails disabled, skipping confirmation for booking %s",
                booking.id,
                extra={"booking_id": booking.id},
            )
            return False
        try:
            self.sender.send_booking_confirmation(booking)
        except Exception:
            self.logger.error(
                "Failed to send booking confirmation for %s",
                booking.id,
                exc_info=True,
                extra={"booking_id": booking.id},
            )
            return False
        return True
