"""
Contingency flags.

Operational kill switches stored in the ``settings`` table. Reads go
through a process-wide cache with a short TTL; writes call
``invalidate_cache()``. Flags only gate soft behaviour (accepting new
bookings, sending e-mails, applying webhooks); no financial invariant ever
depends on a cached value.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from threading import Lock
from time import monotonic
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import ContingencyFlag
from ..core.exceptions import RepositoryException, ServiceUnavailableException
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}

_cache_lock = Lock()
_cached_flags: Optional[Dict[str, bool]] = None
_cached_at: Optional[float] = None


def invalidate_cache() -> None:
    """Drop cached flag values; the next read goes to the database."""
    global _cached_flags, _cached_at
    with _cache_lock:
        _cached_flags = None
        _cached_at = None


def _all_off() -> Dict[str, bool]:
    return {flag.value: False for flag in ContingencyFlag}


class ContingencyService(BaseService):
    def __init__(self, db: Session, ttl_seconds: Optional[float] = None):
        super().__init__(db)
        self.repository = RepositoryFactory.create_setting_repository(db)
        self.ttl_seconds = (
            settings.contingency_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        )

    def get_flags(self) -> Dict[str, bool]:
        global _cached_flags, _cached_at
        now = monotonic()
        with _cache_lock:
            if (
                _cached_flags is not None
                and _cached_at is not None
                and now - _cached_at <= self.ttl_seconds
            ):
                return dict(_cached_flags)

        flags = self._load_flags()
        with _cache_lock:
            _cached_flags = flags
            _cached_at = now
        return dict(flags)

    def _load_flags(self) -> Dict[str, bool]:
        flags = _all_off()
        try:
            # Savepoint: a missing table must not abort the caller's transaction.
            with self.db.begin_nested():
                values = self.repository.get_values(flags.keys())
        except RepositoryException:
            self.logger.warning("Contingency flags unavailable, treating all as off")
            return flags
        for key, raw in values.items():
            flags[key] = raw.strip().lower() in _TRUTHY
        return flags

    def is_enabled(self, flag: ContingencyFlag) -> bool:
        return self.get_flags().get(flag.value, False)

    def ensure_bookings_open(self, *, requires_payment: bool) -> None:
        if self.is_enabled(ContingencyFlag.MAINTENANCE_MODE) or self.is_enabled(
            ContingencyFlag.DISABLE_BOOKINGS
        ):
            raise ServiceUnavailableException(
                "New bookings are temporarily unavailable.",
                details={"reason": "BOOKINGS_DISABLED"},
            )
        if requires_payment and self.is_enabled(ContingencyFlag.DISABLE_PAYMENTS):
            raise ServiceUnavailableException(
                "Online payments are temporarily unavailable.",
                details={"reason": "PAYMENTS_DISABLED"},
            )

    @BaseService.measure_operation("set_flag")
    def set_flag(
        self,
        flag: ContingencyFlag,
        enabled: bool,
        *,
        updated_by: Optional[str] = None,
    ) -> None:
        with self.transaction():
            self.repository.upsert(
                key=flag.value,
                value="true" if enabled else "false",
                updated_by=updated_by,
                updated_at=datetime.now(timezone.utc),
            )
        invalidate_cache()
        self.logger.warning(
            "Contingency flag %s set to %s",
            flag.value,
            enabled,
            extra={"evt": "contingency_flag", "flag": flag.value, "updated_by": updated_by},
        )
