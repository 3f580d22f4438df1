# backend/roombook/api/dependencies/auth.py
"""Authentication and authorization dependencies."""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header

from ...auth import AuthContext, get_current_auth
from ...core.config import settings
from ...core.exceptions import BusinessErrorCode, ForbiddenException, UnauthorizedException

logger = logging.getLogger(__name__)


def require_verified_email(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    """Booking creation is only open to users who confirmed their e-mail."""
    if not auth.email_verified:
        raise ForbiddenException(code=BusinessErrorCode.EMAIL_NOT_VERIFIED)
    return auth


def require_admin(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    """Dependency that ensures the caller has administrator privileges."""
    if not auth.is_admin:
        raise ForbiddenException("Admin access required.")
    return auth


def _constant_time_equals(provided: Optional[str], expected: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """``Authorization: Bearer <CRON_SECRET>``. Without a configured secret nothing passes."""
    expected = settings.cron_secret.get_secret_value() if settings.cron_secret else None
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not _constant_time_equals(token, expected):
        logger.warning("Rejected cron call", extra={"evt": "cron_unauthorized"})
        raise UnauthorizedException()


def require_webhook_token(
    asaas_access_token: Optional[str] = Header(None, alias="asaas-access-token"),
) -> None:
    """The gateway sends the shared token configured in its dashboard."""
    expected = (
        settings.asaas_webhook_token.get_secret_value() if settings.asaas_webhook_token else None
    )
    if expected is None:
        # No token configured: accepted outside production only.
        if settings.environment == "production":
            raise UnauthorizedException()
        return
    if not _constant_time_equals(asaas_access_token, expected):
        logger.warning("Rejected webhook with bad token", extra={"evt": "webhook_unauthorized"})
        raise UnauthorizedException()
