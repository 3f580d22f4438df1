# backend/roombook/services/availability_service.py
"""
Availability guard.

Decides whether a room interval is free, including the turnaround buffer
after each existing booking. The query here is the optimistic pre-check;
the durable guarantee is the room row lock taken by booking creation plus,
on PostgreSQL, the ``bookings_no_overlap`` exclusion constraint.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import BookingConflictException, OverlapViolation
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class AvailabilityService(BaseService):
    def __init__(
        self,
        db: Session,
        booking_repository: Optional[BookingRepository] = None,
        buffer_minutes: Optional[int] = None,
    ):
        super().__init__(db)
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.buffer_minutes = (
            settings.cleanup_buffer_minutes if buffer_minutes is None else buffer_minutes
        )

    def find_conflicts(
        self,
        room_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        return self.booking_repository.find_overlapping(
            room_id,
            ensure_utc(start_time),
            ensure_utc(end_time),
            buffer_minutes=self.buffer_minutes,
            exclude_booking_id=exclude_booking_id,
        )

    @BaseService.measure_operation("is_available")
    def is_available(
        self,
        room_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        return not self.find_conflicts(room_id, start_time, end_time, exclude_booking_id)

    def ensure_available(
        self,
        room_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> None:
        """Raise ``BookingConflictException`` when the interval is taken."""
        conflicts = self.find_conflicts(room_id, start_time, end_time, exclude_booking_id)
        if conflicts:
            self.logger.info(
                "Booking conflict on room %s",
                room_id,
                extra={
                    "room_id": room_id,
                    "start_time": ensure_utc(start_time).isoformat(),
                    "conflicts": len(conflicts),
                },
            )
            prometheus_metrics.inc_booking_conflict()
            raise BookingConflictException(
                details={"room_id": room_id, "buffer_minutes": self.buffer_minutes}
            )

    @staticmethod
    def conflict_from_violation(exc: OverlapViolation, room_id: str) -> BookingConflictException:
        """The store rejected the insert: report it as overbooking, not a 500."""
        logger.warning(
            "Exclusion constraint rejected booking on room %s",
            room_id,
            extra={"room_id": room_id, "constraint": exc.constraint},
        )
        prometheus_metrics.inc_booking_conflict()
        return BookingConflictException(details={"room_id": room_id, "source": "constraint"})
