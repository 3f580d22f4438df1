"""
Pure planning of credit debits and restores.

The ledger service turns these plans into guarded UPDATE statements; keeping
the arithmetic here makes the invariants (``0 <= remaining <= amount``, never
restore more than was consumed) easy to exercise in isolation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

from ..core.exceptions import InsufficientCreditsException


@dataclass(frozen=True)
class CreditSlice:
    credit_id: str
    remaining: int
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


def _timestamp(value: Optional[datetime]) -> float:
    return value.timestamp() if value is not None else float("inf")


def _expiry_sort_key(credit: CreditSlice) -> tuple:
    # Nearest expiry first; credits without expiry last.
    return (_timestamp(credit.expires_at), _timestamp(credit.created_at), credit.credit_id)


def order_for_debit(credits: Sequence[CreditSlice]) -> List[CreditSlice]:
    return sorted(credits, key=_expiry_sort_key)


def plan_debit(credits: Sequence[CreditSlice], amount: int) -> Dict[str, int]:
    """
    Allocate ``amount`` over ``credits`` nearest-expiry first.

    Each credit is drained before the next one is touched. Returns an ordered
    mapping credit id -> cents to take. Raises ``InsufficientCreditsException``
    when the credits cannot cover ``amount``.
    """
    if amount <= 0:
        return {}
    available = sum(max(0, c.remaining) for c in credits)
    if available < amount:
        raise InsufficientCreditsException(available, amount)

    plan: Dict[str, int] = {}
    outstanding = amount
    for credit in order_for_debit(credits):
        if outstanding == 0:
            break
        take = min(max(0, credit.remaining), outstanding)
        if take:
            plan[credit.credit_id] = take
            outstanding -= take
    return plan


def plan_restore(
    allocations: Mapping[str, int],
    headroom: Mapping[str, int],
    amount: int,
) -> Dict[str, int]:
    """
    Spread ``amount`` back over the credits a booking consumed.

    ``allocations`` is what was taken from each credit; ``headroom`` is
    ``amount - remaining`` per credit right now. The total is clamped to both,
    so no credit ever exceeds its original grant and no value is fabricated.
    Shares are proportional to the original allocations, with leftover cents
    handed out by largest remainder and then in allocation order.
    """
    caps: Dict[str, int] = {}
    for credit_id, taken in allocations.items():
        cap = min(int(taken), max(0, int(headroom.get(credit_id, 0))))
        if taken > 0:
            caps[credit_id] = cap

    consumed = sum(int(v) for v in allocations.values() if v > 0)
    target = max(0, min(int(amount), consumed, sum(caps.values())))
    if target == 0:
        return {}

    shares: Dict[str, int] = {}
    remainders = []
    for index, (credit_id, cap) in enumerate(caps.items()):
        quotient, remainder = divmod(target * int(allocations[credit_id]), consumed)
        shares[credit_id] = min(quotient, cap)
        remainders.append((remainder, index, credit_id))

    leftover = target - sum(shares.values())
    for _, _, credit_id in sorted(remainders, key=lambda item: (-item[0], item[1])):
        if leftover == 0:
            break
        if shares[credit_id] < caps[credit_id]:
            shares[credit_id] += 1
            leftover -= 1

    for credit_id, cap in caps.items():
        if leftover == 0:
            break
        give = min(cap - shares[credit_id], leftover)
        shares[credit_id] += give
        leftover -= give

    return {credit_id: share for credit_id, share in shares.items() if share > 0}
