# backend/roombook/services/coupon_service.py
"""
Coupon usage ledger.

Resolves coupon codes into discount terms, records single-use redemptions
and reverses them. A redemption is unique per ``(user, code, context)``;
two concurrent redemptions of the same coupon by the same user end with
exactly one USED row and one ``already_used`` result.

Two kinds of code are never tracked:
- ``OVERRIDE_<reais>`` administrative price overrides
- development coupons (``TESTE*`` or ``is_dev_coupon``)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import (
    AuditAction,
    CouponUsageStatus,
    DiscountType,
    FinancialStatus,
    RoleName,
)
from ..core.exceptions import (
    BusinessErrorCode,
    BusinessException,
    CouponAlreadyUsedException,
    CouponInvalidException,
    UniqueViolation,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.booking import Booking
from ..models.coupon import COUPON_USAGE_UNIQUE_CONSTRAINT, Coupon, CouponUsage
from ..models.credit_purchase import CreditPurchase
from ..repositories.coupon_repository import CouponRepository
from ..repositories.coupon_usage_repository import CouponUsageRepository
from ..repositories.factory import RepositoryFactory
from .audit_service import AuditService
from .base import BaseService

logger = logging.getLogger(__name__)

OVERRIDE_CODE_PATTERN = re.compile(r"^OVERRIDE_(\d+)$")
DEV_COUPON_PREFIX = "TESTE"
MIN_FINAL_AMOUNT_CENTS = 100


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def is_override_code(code: str) -> bool:
    return OVERRIDE_CODE_PATTERN.match(normalize_code(code)) is not None


def is_dev_code(code: str) -> bool:
    return normalize_code(code).startswith(DEV_COUPON_PREFIX)


@dataclass(frozen=True)
class CouponTerms:
    """Everything a booking needs to know about a resolved coupon."""

    code: str
    discount_type: str
    value: int
    description: str = ""
    coupon_id: Optional[str] = None
    is_dev: bool = False
    is_override: bool = False

    @property
    def tracked(self) -> bool:
        return not (self.is_dev or self.is_override)


@dataclass(frozen=True)
class DiscountResult:
    gross: int
    discount: int
    final: int


@dataclass(frozen=True)
class RecordUsageResult:
    ok: bool
    already_used: bool = False
    idempotent: bool = False


def apply_discount(amount: int, discount_type: str, value: int) -> DiscountResult:
    """
    Apply a discount to ``amount`` cents.

    The final price never drops below 100 cents when the gross was at least
    that, and ``final + discount == amount`` always holds.
    """
    amount = max(0, int(amount))
    if discount_type == DiscountType.FIXED.value:
        final = amount - min(max(0, int(value)), amount)
    elif discount_type == DiscountType.PERCENT.value:
        percent = min(max(0, int(value)), 100)
        final = amount - (amount * percent) // 100
    elif discount_type == DiscountType.PRICE_OVERRIDE.value:
        final = min(max(0, int(value)), amount)
    else:
        raise CouponInvalidException(reason="UNKNOWN_DISCOUNT_TYPE")

    if amount >= MIN_FINAL_AMOUNT_CENTS:
        final = max(final, MIN_FINAL_AMOUNT_CENTS)
    return DiscountResult(gross=amount, discount=amount - final, final=final)


def build_snapshot(terms: CouponTerms, result: DiscountResult, now: datetime) -> Dict[str, Any]:
    """Immutable record of the coupon as applied, stored on the booking."""
    return {
        "code": terms.code,
        "discount_type": terms.discount_type,
        "value": terms.value,
        "description": terms.description,
        "applied_discount": result.discount,
        "gross_amount": result.gross,
        "net_amount": result.final,
        "is_override": terms.is_override,
        "is_dev": terms.is_dev,
        "applied_at": ensure_utc(now).isoformat(),
    }


def _same_target(
    usage: CouponUsage, booking_id: Optional[str], purchase_id: Optional[str]
) -> bool:
    if booking_id:
        return usage.booking_id == booking_id
    return bool(purchase_id) and usage.purchase_id == purchase_id


class CouponService(BaseService):
    def __init__(
        self,
        db: Session,
        coupon_repository: Optional[CouponRepository] = None,
        usage_repository: Optional[CouponUsageRepository] = None,
        audit_service: Optional[AuditService] = None,
    ):
        super().__init__(db)
        self.coupon_repository = coupon_repository or RepositoryFactory.create_coupon_repository(db)
        self.usage_repository = (
            usage_repository or RepositoryFactory.create_coupon_usage_repository(db)
        )
        self.audit = audit_service or AuditService(db)

    def _override_terms(self, code: str, actor_role: Optional[str]) -> CouponTerms:
        if actor_role != RoleName.ADMIN.value:
            raise CouponInvalidException(reason="OVERRIDE_NOT_ALLOWED", code=code)
        match = OVERRIDE_CODE_PATTERN.match(code)
        reais = int(match.group(1)) if match else 0
        if reais <= 0:
            raise CouponInvalidException(reason="OVERRIDE_INVALID_AMOUNT", code=code)
        return CouponTerms(
            code=code,
            discount_type=DiscountType.PRICE_OVERRIDE.value,
            value=reais * 100,
            description=f"Admin price override R${reais}",
            is_override=True,
        )

    @BaseService.measure_operation("resolve_coupon")
    def resolve(
        self,
        code: str,
        amount: int,
        *,
        user_id: str,
        context: str,
        actor_role: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CouponTerms:
        """
        Validate ``code`` for this user and amount.

        Raises COUPON_INVALID, COUPON_EXPIRED or COUPON_ALREADY_USED.
        """
        normalized = normalize_code(code)
        if not normalized:
            raise CouponInvalidException(reason="EMPTY_CODE")
        if is_override_code(normalized):
            return self._override_terms(normalized, actor_role)

        coupon = self.coupon_repository.get_by_code(normalized)
        if coupon is None or not coupon.is_active:
            raise CouponInvalidException(reason="NOT_FOUND", code=normalized)

        is_dev = bool(coupon.is_dev_coupon) or is_dev_code(normalized)
        if not is_dev and not settings.coupons_enabled:
            raise CouponInvalidException(reason="COUPONS_DISABLED", code=normalized)

        self._check_validity(coupon, amount, ensure_utc(now or utc_now()))

        terms = CouponTerms(
            code=normalized,
            discount_type=coupon.discount_type,
            value=int(coupon.value),
            description=coupon.description or "",
            coupon_id=coupon.id,
            is_dev=is_dev,
        )
        if terms.tracked:
            usage = self.usage_repository.find_usage(user_id, normalized, context)
            if usage is not None and usage.status == CouponUsageStatus.USED.value:
                raise CouponAlreadyUsedException(normalized)
        return terms

    def _check_validity(self, coupon: Coupon, amount: int, now: datetime) -> None:
        if coupon.valid_from and now < ensure_utc(coupon.valid_from):
            raise CouponInvalidException(reason="NOT_YET_VALID", code=coupon.code)
        if coupon.valid_until and now > ensure_utc(coupon.valid_until):
            raise BusinessException(
                BusinessErrorCode.COUPON_EXPIRED, details={"coupon_code": coupon.code}
            )
        if coupon.min_amount_cents and amount < int(coupon.min_amount_cents):
            raise CouponInvalidException(reason="BELOW_MIN_AMOUNT", code=coupon.code)
        if coupon.max_uses is not None and int(coupon.current_uses or 0) >= int(coupon.max_uses):
            raise CouponInvalidException(reason="MAX_USES_REACHED", code=coupon.code)

    @BaseService.measure_operation("can_use")
    def can_use(
        self,
        user_id: str,
        code: str,
        context: str,
        *,
        amount: int = 0,
        actor_role: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        try:
            self.resolve(
                code, amount, user_id=user_id, context=context, actor_role=actor_role, now=now
            )
        except BusinessException:
            return False
        return True

    @BaseService.measure_operation("record_usage")
    def record_usage(
        self,
        user_id: str,
        terms: CouponTerms,
        context: str,
        booking_id: Optional[str],
        *,
        purchase_id: Optional[str] = None,
    ) -> RecordUsageResult:
        """
        Record one redemption inside the caller's transaction.

        Re-claims a RESTORED row first, otherwise inserts. A unique
        violation is resolved by re-reading the row: same booking or purchase means
        this call already happened, a RESTORED row is re-claimed once,
        anything else is ``already_used``.
        """
        if not terms.tracked:
            return RecordUsageResult(ok=True)

        code = terms.code
        if self.usage_repository.claim_restored(user_id, code, context, booking_id, purchase_id):
            return self._counted(terms, RecordUsageResult(ok=True))

        try:
            self.usage_repository.create(
                user_id=user_id,
                coupon_code=code,
                coupon_id=terms.coupon_id,
                context=context,
                booking_id=booking_id,
                purchase_id=purchase_id,
                status=CouponUsageStatus.USED.value,
            )
        except UniqueViolation as exc:
            if exc.constraint not in (None, COUPON_USAGE_UNIQUE_CONSTRAINT):
                raise
            existing = self.usage_repository.find_usage(user_id, code, context)
            if existing is not None and _same_target(existing, booking_id, purchase_id):
                return RecordUsageResult(ok=True, idempotent=True)
            if existing is not None and existing.status == CouponUsageStatus.RESTORED.value:
                if self.usage_repository.claim_restored(
                    user_id, code, context, booking_id, purchase_id
                ):
                    return self._counted(terms, RecordUsageResult(ok=True))
            self.logger.info(
                "Coupon %s already used by user %s",
                code,
                user_id,
                extra={"coupon_code": code, "user_id": user_id, "context": context},
            )
            return RecordUsageResult(ok=False, already_used=True)

        return self._counted(terms, RecordUsageResult(ok=True))

    def _counted(self, terms: CouponTerms, result: RecordUsageResult) -> RecordUsageResult:
        if terms.coupon_id and not self.coupon_repository.increment_uses(terms.coupon_id):
            raise CouponInvalidException(reason="MAX_USES_REACHED", code=terms.code)
        return result

    @BaseService.measure_operation("restore_for_booking")
    def restore_for_booking(
        self,
        booking: Booking,
        *,
        payment_confirmed: bool,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Make the booking's coupon usable again.

        Only for bookings that never saw a confirmed payment and never
        reached PAID. Override and dev codes are never restored.
        """
        code = normalize_code(booking.coupon_code or "")
        if not code or is_override_code(code) or is_dev_code(code):
            return False
        if payment_confirmed or booking.financial_status == FinancialStatus.PAID.value:
            self.logger.info(
                "Keeping coupon %s consumed: booking %s had a confirmed payment",
                code,
                booking.id,
                extra={"booking_id": booking.id, "coupon_code": code},
            )
            return False

        usages = self.usage_repository.find_used_by_booking(booking.id)
        return self._restore_usages(
            usages, booking.id, "booking", actor_id, ensure_utc(now or utc_now())
        )

    @BaseService.measure_operation("restore_for_purchase")
    def restore_for_purchase(
        self,
        purchase: CreditPurchase,
        *,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Give back the coupon of a purchase that was never paid."""
        code = normalize_code(purchase.coupon_code or "")
        if not code or is_override_code(code) or is_dev_code(code):
            return False
        usages = self.usage_repository.find_used_by_purchase(purchase.id)
        return self._restore_usages(
            usages, purchase.id, "credit_purchase", actor_id, ensure_utc(now or utc_now())
        )

    def _restore_usages(
        self,
        usages: List[CouponUsage],
        target_id: str,
        target_type: str,
        actor_id: Optional[str],
        now: datetime,
    ) -> bool:
        restored = False
        for usage in usages:
            if not self.usage_repository.mark_restored(usage.id, now):
                continue
            restored = True
            if usage.coupon_id:
                self.coupon_repository.decrement_uses(usage.coupon_id)
            self.audit.record(
                AuditAction.COUPON_RESTORED,
                actor_id=actor_id,
                target_id=target_id,
                target_type=target_type,
                metadata={"coupon_code": usage.coupon_code, "context": usage.context},
            )
        return restored
