# backend/roombook/tasks/beat_schedule.py
"""Celery Beat schedule."""

from celery.schedules import crontab

CELERYBEAT_SCHEDULE = {
    # Cancel unpaid PENDING bookings past their expiry and give back credits/coupons
    "expire-pending-bookings": {
        "task": "roombook.tasks.booking_tasks.expire_pending_bookings",
        "schedule": crontab(minute="*/10"),
        "options": {"expires": 540},
    },
}
