# backend/roombook/services/booking_state_machine.py
"""
Booking lifecycle.

    PENDING   -> CONFIRMED | CANCELLED
    CONFIRMED -> CANCELLED | REFUNDED
    CANCELLED, REFUNDED: absorbing

This module is the only writer of ``bookings.status``. Every status change
is a guarded UPDATE (``WHERE status = <expected>``), so two writers racing
on the same booking cannot both apply a transition.

A transition the table does not allow is not raised here. It is reported
back as ``TransitionOutcome.BLOCKED``; webhook callers acknowledge it,
admin callers turn it into a 409 after commit. When the booking was
already settled (a protected downgrade) the attempt is also recorded as a
PROTECTED_DOWNGRADE_BLOCKED audit event inside the caller's transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Dict, FrozenSet, Optional

from sqlalchemy.orm import Session

from ..core.enums import AuditAction, BookingStatus
from ..core.exceptions import InvalidStateTransitionException
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from .audit_service import AuditService
from .base import BaseService

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    BookingStatus.PENDING.value: frozenset(
        {BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value}
    ),
    BookingStatus.CONFIRMED.value: frozenset(
        {BookingStatus.CANCELLED.value, BookingStatus.REFUNDED.value}
    ),
    BookingStatus.CANCELLED.value: frozenset(),
    BookingStatus.REFUNDED.value: frozenset(),
}

PROTECTED_STATUSES: FrozenSet[str] = frozenset(
    {
        BookingStatus.CONFIRMED.value,
        BookingStatus.CANCELLED.value,
        BookingStatus.REFUNDED.value,
    }
)

_MAX_ATTEMPTS = 2


def _value(status: Any) -> str:
    return str(getattr(status, "value", status))


def can_transition(current: Any, target: Any) -> bool:
    return _value(target) in ALLOWED_TRANSITIONS.get(_value(current), frozenset())


def is_protected_downgrade(current: Any, target: Any) -> bool:
    """A change out of CONFIRMED/CANCELLED/REFUNDED that the table does not allow."""
    current, target = _value(current), _value(target)
    return current in PROTECTED_STATUSES and current != target and not can_transition(
        current, target
    )


class TransitionOutcome(str, Enum):
    APPLIED = "APPLIED"
    NOOP = "NOOP"
    BLOCKED = "BLOCKED"


@dataclass(frozen=True)
class TransitionResult:
    outcome: TransitionOutcome
    previous: str
    target: str

    @property
    def applied(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED

    def raise_if_blocked(self) -> None:
        if self.outcome is TransitionOutcome.BLOCKED:
            raise InvalidStateTransitionException(self.previous, self.target)


class BookingStateMachine(BaseService):
    def __init__(
        self,
        db: Session,
        booking_repository: Optional[BookingRepository] = None,
        audit_service: Optional[AuditService] = None,
    ):
        super().__init__(db)
        self.repository = booking_repository or RepositoryFactory.create_booking_repository(db)
        self.audit = audit_service or AuditService(db)

    @BaseService.measure_operation("transition")
    def transition(
        self,
        booking: Booking,
        target: BookingStatus,
        *,
        actor_id: Optional[str],
        source: str,
        values: Optional[Dict[str, Any]] = None,
    ) -> TransitionResult:
        """
        Move ``booking`` to ``target`` inside the caller's transaction.

        Moving to the current status is a NOOP. ``values`` are written in
        the same UPDATE as the status. The booking instance is expired
        afterwards and reloads on next access.
        """
        wanted = _value(target)
        for _ in range(_MAX_ATTEMPTS):
            current = booking.status
            if current == wanted:
                return TransitionResult(TransitionOutcome.NOOP, current, wanted)
            if not can_transition(current, wanted):
                return self._block(booking, current, wanted, actor_id=actor_id, source=source)
            if self.repository.transition_status(
                booking.id, [current], status=wanted, **(values or {})
            ):
                self.logger.info(
                    "Booking %s %s -> %s",
                    booking.id,
                    current,
                    wanted,
                    extra={"booking_id": booking.id, "source": source},
                )
                return TransitionResult(TransitionOutcome.APPLIED, current, wanted)
            # Lost the race: re-read the committed status and decide again.
            self.db.refresh(booking)
        return self._block(booking, booking.status, wanted, actor_id=actor_id, source=source)

    def _block(
        self,
        booking: Booking,
        current: str,
        target: str,
        *,
        actor_id: Optional[str],
        source: str,
    ) -> TransitionResult:
        if not is_protected_downgrade(current, target):
            self.logger.warning(
                "Refused booking %s transition %s -> %s from %s",
                booking.id,
                current,
                target,
                source,
                extra={
                    "evt": "invalid_transition",
                    "booking_id": booking.id,
                    "current_status": current,
                    "target_status": target,
                    "source": source,
                },
            )
            return TransitionResult(TransitionOutcome.BLOCKED, current, target)

        self.logger.warning(
            "Blocked booking %s transition %s -> %s from %s",
            booking.id,
            current,
            target,
            source,
            extra={
                "evt": "protected_downgrade_blocked",
                "booking_id": booking.id,
                "current_status": current,
                "target_status": target,
                "source": source,
            },
        )
        self.audit.record(
            AuditAction.PROTECTED_DOWNGRADE_BLOCKED,
            actor_id=actor_id,
            target_id=booking.id,
            metadata={"from": current, "to": target, "source": source},
        )
        prometheus_metrics.inc_protected_downgrade()
        return TransitionResult(TransitionOutcome.BLOCKED, current, target)
