# backend/roombook/api/dependencies/__init__.py
"""FastAPI dependencies: database session, auth and service wiring."""

from .auth import require_admin, require_cron_secret, require_verified_email, require_webhook_token
from .database import get_db
from .services import (
    get_booking_service,
    get_cleanup_service,
    get_credit_purchase_service,
    get_gateway,
    get_webhook_service,
)

__all__ = [
    "get_booking_service",
    "get_cleanup_service",
    "get_credit_purchase_service",
    "get_db",
    "get_gateway",
    "get_webhook_service",
    "require_admin",
    "require_cron_secret",
    "require_verified_email",
    "require_webhook_token",
]
