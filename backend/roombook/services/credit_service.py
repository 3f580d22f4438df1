# backend/roombook/services/credit_service.py
"""
Credit ledger.

The only writer of ``credits.remaining_amount``. Debit and restore run in
the caller's transaction and never commit on their own.

Debit re-reads the eligible credits under row locks and applies each take
as a guarded UPDATE (``remaining_amount >= take``), so two requests racing
for the same balance cannot both succeed even where locks are unavailable.
Restore is clamped twice: by what the booking still has outstanding on each
credit and by the credit's headroom (``amount - remaining_amount``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.enums import CreditStatus, CreditType
from ..core.exceptions import (
    CreditConsumedByAnotherException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..domain.credit_allocation import CreditSlice, plan_debit, plan_restore
from ..domain.usage_rules import is_credit_usable_for
from ..models.booking import Booking
from ..models.credit import Credit
from ..models.room import Room
from ..repositories.credit_repository import CreditRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class DebitResult:
    allocations: Dict[str, int] = field(default_factory=dict)

    @property
    def credit_ids(self) -> List[str]:
        return list(self.allocations.keys())

    @property
    def total(self) -> int:
        return sum(self.allocations.values())


@dataclass
class RestoreResult:
    restored: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.restored.values())


def _slice(credit: Credit) -> CreditSlice:
    return CreditSlice(
        credit_id=credit.id,
        remaining=int(credit.remaining_amount),
        expires_at=ensure_utc(credit.expires_at) if credit.expires_at else None,
        created_at=ensure_utc(credit.created_at) if credit.created_at else None,
    )


class CreditService(BaseService):
    def __init__(self, db: Session, credit_repository: Optional[CreditRepository] = None):
        super().__init__(db)
        self.repository = credit_repository or RepositoryFactory.create_credit_repository(db)

    def eligible_credits(
        self,
        user_id: str,
        room: Room,
        start_time: datetime,
        end_time: datetime,
        *,
        now: Optional[datetime] = None,
        for_update: bool = False,
    ) -> List[Credit]:
        """Credits that may fund ``[start_time, end_time)`` in ``room``."""
        candidates = self.repository.list_candidates(
            user_id,
            room.id,
            int(room.tier),
            ensure_utc(now or utc_now()),
            for_update=for_update,
        )
        return [
            c
            for c in candidates
            if is_credit_usable_for(c.usage_type, start_time, end_time, c.credit_type)
        ]

    @BaseService.measure_operation("get_balance")
    def get_balance(
        self,
        user_id: str,
        room: Room,
        start_time: datetime,
        end_time: datetime,
        *,
        now: Optional[datetime] = None,
    ) -> int:
        credits = self.eligible_credits(user_id, room, start_time, end_time, now=now)
        return sum(int(c.remaining_amount) for c in credits)

    @BaseService.measure_operation("debit")
    def debit(
        self,
        user_id: str,
        room: Room,
        amount: int,
        start_time: datetime,
        end_time: datetime,
        *,
        now: Optional[datetime] = None,
    ) -> DebitResult:
        """
        Consume ``amount`` cents, nearest expiry first.

        Must be called inside the booking transaction. Raises
        ``InsufficientCreditsException`` when the balance seen under lock is
        too small and ``CreditConsumedByAnotherException`` when a guarded
        UPDATE loses a race.
        """
        if amount <= 0:
            return DebitResult()
        current = ensure_utc(now or utc_now())
        credits = self.eligible_credits(
            user_id, room, start_time, end_time, now=current, for_update=True
        )
        plan = plan_debit([_slice(c) for c in credits], amount)

        for credit_id, take in plan.items():
            if not self.repository.debit(credit_id, take, current):
                self.logger.warning(
                    "Credit %s changed during debit",
                    credit_id,
                    extra={"credit_id": credit_id, "user_id": user_id, "take": take},
                )
                raise CreditConsumedByAnotherException(credit_id)

        self.logger.info(
            "Debited %s cents from %s credit(s)",
            amount,
            len(plan),
            extra={"user_id": user_id, "credit_ids": list(plan.keys())},
        )
        return DebitResult(allocations=dict(plan))

    @BaseService.measure_operation("restore")
    def restore(
        self,
        allocations: Mapping[str, int],
        amount: int,
        *,
        now: Optional[datetime] = None,
    ) -> RestoreResult:
        """
        Give back up to ``amount`` cents over ``allocations``.

        ``allocations`` maps credit id -> cents still outstanding for the
        caller. The result never exceeds either bound, so no balance is ever
        fabricated.
        """
        if amount <= 0 or not allocations:
            return RestoreResult()
        current = ensure_utc(now or utc_now())
        credits = self.repository.get_many(allocations.keys(), for_update=True)
        headroom = {c.id: int(c.amount) - int(c.remaining_amount) for c in credits}
        plan = plan_restore(allocations, headroom, amount)

        restored: Dict[str, int] = {}
        for credit_id, give in plan.items():
            if self.repository.restore(credit_id, give, current):
                restored[credit_id] = give
            else:
                self.logger.warning(
                    "Skipped restore of %s cents to credit %s: would exceed grant",
                    give,
                    credit_id,
                    extra={"credit_id": credit_id},
                )
        return RestoreResult(restored=restored)

    def outstanding_allocations(self, booking: Booking) -> Dict[str, int]:
        """
        Per-credit cents the booking still holds.

        Bookings created before allocations were tracked only carry
        ``credit_ids`` (``credit_allocations`` is NULL); for those the
        consumed part of each credit (``amount - remaining_amount``) is the
        cap, and the total stays clamped by ``credits_used``. An empty map
        means everything was already given back.
        """
        if booking.credit_allocations is not None or not booking.consumed_credit_ids:
            return {k: v for k, v in booking.consumed_allocations.items() if v > 0}

        budget = int(booking.credits_used or 0)
        legacy: Dict[str, int] = {}
        for credit in self.repository.get_many(booking.consumed_credit_ids):
            if budget <= 0:
                break
            take = min(credit.consumed_amount, budget)
            if take > 0:
                legacy[credit.id] = take
                budget -= take
        return legacy

    def restore_for_booking(
        self,
        booking: Booking,
        amount: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Restore ``amount`` (default: everything outstanding) of a booking's credits.

        The booking's allocation map is reduced by what was given back, so
        repeated partial restores can never add up to more than was consumed.
        """
        outstanding = self.outstanding_allocations(booking)
        target = sum(outstanding.values()) if amount is None else amount
        result = self.restore(outstanding, target, now=now)
        if result.restored:
            remaining = {
                credit_id: cents - result.restored.get(credit_id, 0)
                for credit_id, cents in outstanding.items()
            }
            booking.credit_allocations = {k: v for k, v in remaining.items() if v > 0}
            self.logger.info(
                "Restored %s cents to booking %s credits",
                result.total,
                booking.id,
                extra={"booking_id": booking.id, "credit_ids": list(result.restored.keys())},
            )
        return result.total

    @BaseService.measure_operation("issue_credit")
    def issue_credit(
        self,
        user_id: str,
        amount: int,
        *,
        source: str,
        room_id: Optional[str] = None,
        tier: Optional[int] = None,
        usage_type: Optional[str] = None,
        credit_type: str = CreditType.MANUAL.value,
        expires_at: Optional[datetime] = None,
    ) -> Credit:
        """Grant a new credit inside the caller's transaction."""
        if amount <= 0:
            raise ValidationException("Credit amount must be positive.")
        return self.repository.create(
            user_id=user_id,
            amount=amount,
            remaining_amount=amount,
            status=CreditStatus.CONFIRMED.value,
            source=source,
            room_id=room_id,
            tier=tier,
            usage_type=usage_type,
            credit_type=credit_type,
            expires_at=ensure_utc(expires_at) if expires_at else None,
        )

    @BaseService.measure_operation("revoke_unused")
    def revoke_unused(
        self,
        credit_id: str,
        amount: int,
        *,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Take back up to ``amount`` of a credit's unspent balance.

        Used when the money behind a granted credit is refunded. What the
        user already spent stays spent; returns the cents actually revoked.
        """
        credit = self.repository.get_by_id(credit_id, for_update=True)
        if credit is None:
            raise NotFoundException("Credit not found.", details={"credit_id": credit_id})
        take = min(int(amount), int(credit.remaining_amount))
        if take <= 0 or credit.status != CreditStatus.CONFIRMED.value:
            return 0
        if not self.repository.debit(credit_id, take, ensure_utc(now or utc_now())):
            raise CreditConsumedByAnotherException(credit_id)
        self.logger.info(
            "Revoked %s cents of credit %s",
            take,
            credit_id,
            extra={"credit_id": credit_id, "user_id": credit.user_id},
        )
        return take
