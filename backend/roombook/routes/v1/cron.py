# backend/roombook/routes/v1/cron.py
"""
Scheduled jobs callable over HTTP - API v1

    POST /cron/cleanup-pending-bookings

For schedulers that cannot reach the Celery beat (platform cron). Guarded
by ``Authorization: Bearer <CRON_SECRET>``.
"""

import logging

from fastapi import APIRouter, Depends

from ...api.dependencies import get_cleanup_service, require_cron_secret
from ...schemas.operations import CleanupResponse
from ...services.booking_cleanup_service import BookingCleanupService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron-v1"])


@router.post(
    "/cleanup-pending-bookings",
    response_model=CleanupResponse,
    dependencies=[Depends(require_cron_secret)],
)
def cleanup_pending_bookings(
    cleanup_service: BookingCleanupService = Depends(get_cleanup_service),
) -> CleanupResponse:
    report = cleanup_service.run_expiry_cleanup()
    return CleanupResponse(
        processed=report.processed,
        cancelled=report.cancelled,
        coupons_restored=report.coupons_restored,
        errors=report.errors,
    )
