# backend/roombook/services/booking_cleanup_service.py
"""
Expiry cleanup for unpaid bookings.

Cancels PENDING bookings whose ``expires_at`` has passed (or, with no
expiry, that are older than the fallback ceiling) and gives back their
credits and coupon. Safe to run repeatedly and concurrently: each booking
is cancelled in its own transaction through a guarded transition, so a
row already cancelled by another run, a webhook or its owner is skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import AuditAction, BookingStatus, CancelReason, CancelSource
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.payment import Payment
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .booking_service import BookingService

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    processed: int = 0
    cancelled: int = 0
    coupons_restored: int = 0
    credits_restored: int = 0
    errors: int = 0
    booking_ids: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "cancelled": self.cancelled,
            "couponsRestored": self.coupons_restored,
            "errors": self.errors,
        }


class BookingCleanupService(BaseService):
    def __init__(self, db: Session, booking_service: Optional[BookingService] = None):
        super().__init__(db)
        self.bookings = booking_service or BookingService(db)
        self.repository = self.bookings.booking_repository

    @BaseService.measure_operation("run_expiry_cleanup")
    def run_expiry_cleanup(
        self,
        *,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> CleanupReport:
        current = ensure_utc(now or utc_now())
        fallback_cutoff = current - timedelta(hours=settings.stale_pending_fallback_hours)
        batch = limit or settings.cleanup_batch_size

        with self.transaction():
            candidate_ids = [
                booking.id
                for booking in self.repository.find_expired_pending(current, fallback_cutoff, batch)
            ]

        report = CleanupReport()
        to_cancel_externally: List[Payment] = []
        for booking_id in candidate_ids:
            report.processed += 1
            try:
                with self.transaction():
                    booking = self.repository.get_for_update(booking_id)
                    if (
                        booking is None
                        or booking.status != BookingStatus.PENDING.value
                        or booking.cancel_reason is not None
                    ):
                        continue
                    outcome = self.bookings.cancel_locked(
                        booking,
                        reason=CancelReason.EXPIRED_NO_PAYMENT,
                        source=CancelSource.SYSTEM,
                        actor_id=None,
                        action=AuditAction.BOOKING_EXPIRED,
                        now=current,
                    )
            except Exception:
                report.errors += 1
                self.logger.error(
                    "Expiry cleanup failed for booking %s",
                    booking_id,
                    exc_info=True,
                    extra={"booking_id": booking_id},
                )
                continue

            if not outcome.transition.applied:
                continue
            report.cancelled += 1
            report.booking_ids.append(booking_id)
            report.credits_restored += outcome.credits_restored
            if outcome.coupon_restored:
                report.coupons_restored += 1
            if outcome.payment is not None:
                to_cancel_externally.append(outcome.payment)

        for payment in to_cancel_externally:
            self.bookings.payments.cancel_external(payment)

        prometheus_metrics.inc_expired_bookings(report.cancelled)
        self.logger.info(
            "Expiry cleanup: %s processed, %s cancelled, %s errors",
            report.processed,
            report.cancelled,
            report.errors,
            extra={"evt": "expiry_cleanup", **report.as_dict()},
        )
        return report
