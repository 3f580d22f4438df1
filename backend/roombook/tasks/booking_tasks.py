# backend/roombook/tasks/booking_tasks.py
"""Periodic booking maintenance."""

import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..services.booking_cleanup_service import BookingCleanupService
from .celery_app import celery_app

logger = logging.getLogger(__name__)


def run_expiry_cleanup(db: Session) -> Dict[str, Any]:
    report = BookingCleanupService(db).run_expiry_cleanup()
    return report.as_dict()


@celery_app.task(name="roombook.tasks.booking_tasks.expire_pending_bookings")
def expire_pending_bookings() -> Dict[str, Any]:
    """
    Same job as POST /api/v1/cron/cleanup-pending-bookings.

    Overlapping runs are safe: each booking is cancelled through a guarded
    transition, so a booking is restored at most once.
    """
    db: Session = SessionLocal()
    try:
        return run_expiry_cleanup(db)
    finally:
        db.close()
