# backend/roombook/repositories/booking_repository.py
"""
Booking Repository

Implements data access for bookings:
- Overlap queries used by the availability guard (buffer-aware)
- Creation that surfaces the exclusion constraint as ``OverlapViolation``
- Expired PENDING batch selection for the cleanup job
- Guarded status updates (``WHERE status IN (...)``) so concurrent writers
  never both apply the same transition
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import ACTIVE_BOOKING_STATUSES, BookingStatus
from ..core.exceptions import RepositoryException
from ..models.booking import BOOKING_OVERLAP_CONSTRAINT, Booking
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    constraint_signatures = {BOOKING_OVERLAP_CONSTRAINT: BOOKING_OVERLAP_CONSTRAINT}

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_for_update(self, booking_id: str) -> Optional[Booking]:
        return self.get_by_id(booking_id, for_update=True)

    def find_overlapping(
        self,
        room_id: str,
        start_time: datetime,
        end_time: datetime,
        buffer_minutes: int = 0,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Active bookings on ``room_id`` that conflict with ``[start_time, end_time)``.

        An existing booking conflicts when
        ``start_time < existing.end + buffer AND end_time > existing.start``.
        The buffer only extends the existing booking's end; it is rewritten as
        ``existing.end > start_time - buffer`` to keep the query portable.
        """
        try:
            query = self.db.query(Booking).filter(
                Booking.room_id == room_id,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                Booking.start_time < end_time,
                Booking.end_time > start_time - timedelta(minutes=buffer_minutes),
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return query.order_by(Booking.start_time).all()
        except SQLAlchemyError as e:
            self.logger.error("Error checking overlaps for room %s: %s", room_id, str(e))
            raise RepositoryException("Failed to check booking overlaps") from e

    def find_expired_pending(
        self,
        now: datetime,
        fallback_cutoff: datetime,
        limit: int,
    ) -> List[Booking]:
        """
        PENDING bookings past their expiry, oldest first.

        Rows without ``expires_at`` fall back to ``created_at < fallback_cutoff``.
        Rows already carrying a cancel reason are skipped. On PostgreSQL the
        batch is claimed with ``SKIP LOCKED`` so concurrent cleanups split the
        work instead of waiting on each other.
        """
        try:
            query = (
                self.db.query(Booking)
                .filter(
                    Booking.status == BookingStatus.PENDING.value,
                    Booking.cancel_reason.is_(None),
                    or_(
                        Booking.expires_at < now,
                        and_(Booking.expires_at.is_(None), Booking.created_at < fallback_cutoff),
                    ),
                )
                .order_by(Booking.created_at, Booking.id)
                .limit(limit)
            )
            if self.is_postgres:
                query = query.with_for_update(skip_locked=True, of=Booking)
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error("Error loading expired pending bookings: %s", str(e))
            raise RepositoryException("Failed to load expired bookings") from e

    def transition_status(
        self,
        booking_id: str,
        from_statuses: Iterable[str],
        **values: Any,
    ) -> bool:
        """
        Conditionally update a booking still in one of ``from_statuses``.

        Returns False when another writer moved the booking first. Pending
        changes are flushed before and the in-session instance is expired after.
        """
        allowed = [getattr(s, "value", s) for s in from_statuses]
        try:
            self.db.flush()
            result = self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status.in_(allowed))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error("Error updating booking %s status: %s", booking_id, str(e))
            raise RepositoryException("Failed to update booking status") from e
        self.expire_cached(booking_id)
        return bool(result.rowcount)
