"""
Bearer-token authentication.

Tokens are HS256 JWTs issued by the identity provider. The claims used
here are ``sub`` (user id), ``role`` and ``email_verified``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional, cast

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from jwt import PyJWTError

from .core.config import settings
from .core.enums import RoleName
from .core.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _secret_value(secret_obj: Any) -> str:
    getter = getattr(secret_obj, "get_secret_value", None)
    if callable(getter):
        return cast(str, getter())
    return cast(str, secret_obj)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    role: str = RoleName.CUSTOMER.value
    email_verified: bool = False
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN.value


def decode_access_token(token: str) -> Dict[str, Any]:
    payload_raw = jwt.decode(
        token,
        _secret_value(settings.jwt_secret_key),
        algorithms=[settings.jwt_algorithm],
        options={"verify_aud": False},
    )
    return cast(Dict[str, Any], payload_raw)


def create_access_token(
    user_id: str,
    *,
    role: str = RoleName.CUSTOMER.value,
    email_verified: bool = True,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Mint a token. Used by local tooling and tests; production tokens come from the IdP."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "role": role,
        "email_verified": email_verified,
        "exp": expire,
    }
    if email:
        claims["email"] = email
    return jwt.encode(
        claims, _secret_value(settings.jwt_secret_key), algorithm=settings.jwt_algorithm
    )


def auth_context_from_token(token: str) -> AuthContext:
    try:
        payload = decode_access_token(token)
    except PyJWTError as e:
        logger.info("Rejected bearer token: %s", type(e).__name__)
        raise UnauthorizedException("Invalid or expired token.") from e

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise UnauthorizedException("Invalid or expired token.")
    role = str(payload.get("role") or RoleName.CUSTOMER.value).upper()
    return AuthContext(
        user_id=user_id,
        role=role,
        email_verified=bool(payload.get("email_verified", False)),
        email=payload.get("email"),
    )


def get_current_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthorizedException()
    return auth_context_from_token(credentials.credentials)
