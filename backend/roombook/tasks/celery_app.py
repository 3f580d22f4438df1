# backend/roombook/tasks/celery_app.py
"""
Celery application configuration.

Redis is the broker. Results are not stored: the only periodic job
reports through logs and metrics.
"""

import os

from celery import Celery

from ..core.config import settings
from .beat_schedule import CELERYBEAT_SCHEDULE


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    # Priority: CELERY_BROKER_URL -> settings.redis_url
    broker_url = os.getenv("CELERY_BROKER_URL") or settings.redis_url

    celery_app = Celery("roombook", broker=broker_url)
    celery_app.conf.update(
        {
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "task_ignore_result": True,
            "timezone": settings.business_timezone,
            "enable_utc": True,
            "worker_prefetch_multiplier": 1,
            "task_soft_time_limit": 240,
            "task_time_limit": 300,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "worker_hijack_root_logger": False,
            "beat_schedule": CELERYBEAT_SCHEDULE,
            "broker_transport_options": {"visibility_timeout": 3600},
        }
    )
    celery_app.conf.imports = ("roombook.tasks.booking_tasks",)
    return celery_app


celery_app = create_celery_app()
