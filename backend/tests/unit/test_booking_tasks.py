from datetime import timedelta

from roombook.core.timezone_utils import utc_now
from roombook.tasks import booking_tasks
from roombook.tasks.beat_schedule import CELERYBEAT_SCHEDULE
from roombook.tasks.celery_app import celery_app


def test_expiry_task_is_registered_and_scheduled():
    task_name = "roombook.tasks.booking_tasks.expire_pending_bookings"
    assert task_name in celery_app.tasks
    assert CELERYBEAT_SCHEDULE["expire-pending-bookings"]["task"] == task_name


def test_run_expiry_cleanup_reports_counts(db, make_booking, room, user_id, window):
    make_booking(user_id, room, *window(10), expires_at=utc_now() - timedelta(minutes=1))

    report = booking_tasks.run_expiry_cleanup(db)

    assert report == {"processed": 1, "cancelled": 1, "couponsRestored": 0, "errors": 0}
