# backend/roombook/services/credit_purchase_service.py
"""
Credit package purchases.

Buying credit follows the same two-phase shape as a booking with a cash
remainder:

1. one transaction: price the package, apply the coupon, insert the
   PENDING purchase and record the coupon redemption
2. after commit: create the external charge (``purchase:<id>:<method>``)
3. if step 2 fails: the purchase is CANCELLED and the coupon given back

No credit exists until the gateway confirms the payment. The webhook then
moves the purchase PENDING -> PAID with a guarded update and, only when
that update wins, grants the credit through the credit ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.enums import (
    AuditAction,
    CouponContext,
    CreditUsageType,
    PaymentEntityKind,
    PaymentMethod,
    PurchaseStatus,
)
from ..core.exceptions import (
    CouponAlreadyUsedException,
    NotFoundException,
    PaymentCreationFailedException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..domain.pricing import price_credit_package
from ..integrations.asaas_client import PaymentCustomer, PaymentGateway
from ..models.credit import Credit
from ..models.credit_purchase import DEFAULT_VALIDITY_DAYS, CreditPurchase
from ..repositories.factory import RepositoryFactory
from .audit_service import AuditService
from .base import BaseService
from .contingency_service import ContingencyService
from .coupon_service import (
    CouponService,
    CouponTerms,
    DiscountResult,
    apply_discount,
    build_snapshot,
)
from .credit_service import CreditService
from .payment_orchestrator import PaymentOrchestrator, PaymentResult, validate_min_amount

logger = logging.getLogger(__name__)

MAX_PACKAGE_QUANTITY = 20
PURCHASE_CREDIT_SOURCE = "PURCHASE"


@dataclass
class PurchaseCreditsCommand:
    user_id: str
    room_id: str
    usage_type: str = CreditUsageType.HOURLY.value
    quantity: int = 1
    coupon_code: Optional[str] = None
    payment_method: str = PaymentMethod.PIX.value
    customer: Optional[PaymentCustomer] = None
    actor_role: Optional[str] = None


@dataclass
class PurchaseCreated:
    purchase: CreditPurchase
    payment: PaymentResult

    @property
    def payment_url(self) -> Optional[str]:
        return self.payment.checkout_url


class CreditPurchaseService(BaseService):
    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        *,
        credit_service: Optional[CreditService] = None,
        coupon_service: Optional[CouponService] = None,
        payment_orchestrator: Optional[PaymentOrchestrator] = None,
        audit_service: Optional[AuditService] = None,
        contingency_service: Optional[ContingencyService] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_credit_purchase_repository(db)
        self.room_repository = RepositoryFactory.create_room_repository(db)
        self.audit = audit_service or AuditService(db)
        self.credits = credit_service or CreditService(db)
        self.coupons = coupon_service or CouponService(db, audit_service=self.audit)
        self.payments = payment_orchestrator or PaymentOrchestrator(db, gateway=gateway)
        self.contingency = contingency_service or ContingencyService(db)

    @BaseService.measure_operation("purchase_credits")
    def purchase_credits(
        self,
        command: PurchaseCreditsCommand,
        *,
        now: Optional[datetime] = None,
    ) -> PurchaseCreated:
        """
        Start the purchase of a credit package and return its checkout.

        Raises the business error of the first rule that fails; nothing is
        written in that case. Raises PAYMENT_CREATION_FAILED after the
        purchase was cancelled.
        """
        current = ensure_utc(now or utc_now())
        method = PaymentMethod(command.payment_method.upper()).value
        try:
            usage_type = CreditUsageType(command.usage_type.upper()).value
        except ValueError:
            raise ValidationException(
                "Unknown credit usage type.", details={"usage_type": command.usage_type}
            ) from None
        if not 1 <= command.quantity <= MAX_PACKAGE_QUANTITY:
            raise ValidationException(
                "Quantity out of range.",
                details={"quantity": command.quantity, "max": MAX_PACKAGE_QUANTITY},
            )

        self.contingency.ensure_bookings_open(requires_payment=True)
        room = self.room_repository.get_active(command.room_id)
        if room is None:
            raise NotFoundException("Room not found.", details={"room_id": command.room_id})

        gross = price_credit_package(room, usage_type, command.quantity)
        terms: Optional[CouponTerms] = None
        priced = DiscountResult(gross=gross, discount=0, final=gross)
        if command.coupon_code:
            terms = self.coupons.resolve(
                command.coupon_code,
                gross,
                user_id=command.user_id,
                context=CouponContext.PURCHASE.value,
                actor_role=command.actor_role,
                now=current,
            )
            priced = apply_discount(gross, terms.discount_type, terms.value)
        validate_min_amount(priced.final, method)

        with self.transaction():
            purchase = self.repository.create(
                user_id=command.user_id,
                room_id=room.id,
                usage_type=usage_type,
                quantity=command.quantity,
                credit_amount=gross,
                gross_amount=priced.gross,
                discount_amount=priced.discount,
                net_amount=priced.final,
                refunded_amount=0,
                payment_method=method,
                coupon_code=terms.code if terms else None,
                coupon_snapshot=build_snapshot(terms, priced, current) if terms else None,
                status=PurchaseStatus.PENDING.value,
                validity_days=DEFAULT_VALIDITY_DAYS,
            )
            if terms is not None:
                usage = self.coupons.record_usage(
                    command.user_id,
                    terms,
                    CouponContext.PURCHASE.value,
                    None,
                    purchase_id=purchase.id,
                )
                if usage.already_used:
                    raise CouponAlreadyUsedException(terms.code)
            self.audit.record(
                AuditAction.CREDIT_PURCHASE_CREATED,
                actor_id=command.user_id,
                target_id=purchase.id,
                target_type="credit_purchase",
                metadata={
                    "room_id": room.id,
                    "usage_type": usage_type,
                    "quantity": command.quantity,
                    "credit_amount": gross,
                    "net_amount": priced.final,
                    "coupon_code": terms.code if terms else None,
                },
            )

        self.logger.info(
            "Credit purchase %s created",
            purchase.id,
            extra={
                "purchase_id": purchase.id,
                "room_id": room.id,
                "usage_type": usage_type,
                "net_amount": priced.final,
            },
        )
        payment = self._create_payment(purchase, command, method)
        return PurchaseCreated(purchase=purchase, payment=payment)

    def _create_payment(
        self,
        purchase: CreditPurchase,
        command: PurchaseCreditsCommand,
        method: str,
    ) -> PaymentResult:
        customer = command.customer or PaymentCustomer(
            name=command.user_id, email=f"{command.user_id}@users.invalid"
        )
        try:
            return self.payments.create_idempotent(
                entity_id=purchase.id,
                entity_kind=PaymentEntityKind.PURCHASE,
                user_id=command.user_id,
                amount_cents=int(purchase.net_amount),
                method=method,
                customer=customer,
                description=f"Credit package {purchase.usage_type} x{purchase.quantity}",
            )
        except Exception as exc:
            self.logger.error(
                "Payment creation failed for credit purchase %s, cancelling",
                purchase.id,
                extra={"purchase_id": purchase.id, "error_type": type(exc).__name__},
            )
            self.db.rollback()
            with self.transaction():
                locked = self.repository.get_for_update(purchase.id)
                if locked is not None:
                    self.cancel_locked(locked, reason="PAYMENT_CREATION_FAILED")
            raise PaymentCreationFailedException(purchase_id=purchase.id) from exc

    def cancel_locked(
        self,
        purchase: CreditPurchase,
        *,
        reason: str,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """PENDING -> CANCELLED and give the coupon back. Caller owns the transaction."""
        current = ensure_utc(now or utc_now())
        if not self.repository.transition_status(
            purchase.id,
            [PurchaseStatus.PENDING.value],
            status=PurchaseStatus.CANCELLED.value,
            cancelled_at=current,
            updated_at=current,
        ):
            return False
        coupon_restored = self.coupons.restore_for_purchase(
            purchase, actor_id=actor_id, now=current
        )
        self.audit.record(
            AuditAction.CREDIT_PURCHASE_CANCELLED,
            actor_id=actor_id,
            target_id=purchase.id,
            target_type="credit_purchase",
            metadata={"reason": reason, "coupon_restored": coupon_restored},
        )
        return True

    def confirm_from_payment(
        self,
        purchase: CreditPurchase,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Credit]:
        """
        Grant the purchased credit once the payment is confirmed.

        A purchase cancelled while the charge was still payable is paid all
        the same: the money moved. Returns None when the credit was already
        granted by an earlier delivery.
        """
        current = ensure_utc(now or utc_now())
        if not self.repository.transition_status(
            purchase.id,
            [PurchaseStatus.PENDING.value, PurchaseStatus.CANCELLED.value],
            status=PurchaseStatus.PAID.value,
            paid_at=current,
            cancelled_at=None,
            updated_at=current,
        ):
            self.logger.info(
                "Credit purchase %s already settled (%s)",
                purchase.id,
                purchase.status,
                extra={"purchase_id": purchase.id},
            )
            return None

        credit = self.credits.issue_credit(
            purchase.user_id,
            int(purchase.credit_amount),
            source=PURCHASE_CREDIT_SOURCE,
            room_id=purchase.room_id,
            usage_type=purchase.usage_type,
            expires_at=current + timedelta(days=int(purchase.validity_days)),
        )
        self.repository.transition_status(
            purchase.id, [PurchaseStatus.PAID.value], credit_id=credit.id
        )
        self.audit.record(
            AuditAction.CREDIT_PURCHASE_PAID,
            actor_id=None,
            target_id=purchase.id,
            target_type="credit_purchase",
            metadata={"credit_id": credit.id, "credit_amount": int(purchase.credit_amount)},
        )
        self.logger.info(
            "Credit purchase %s paid, credit %s granted",
            purchase.id,
            credit.id,
            extra={"purchase_id": purchase.id, "credit_id": credit.id},
        )
        return credit

    def refund_from_payment(
        self,
        purchase: CreditPurchase,
        refunded_total: int,
        *,
        full: bool,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Take back the unspent share of the credit matching a refund.

        The share is the refunded fraction of what was charged, applied to
        the credit granted. Returns the cents revoked by this call.
        """
        current = ensure_utc(now or utc_now())
        previous = int(purchase.refunded_amount or 0)
        delta = max(int(refunded_total) - previous, 0)
        if purchase.status != PurchaseStatus.PAID.value or delta == 0:
            return 0

        net = int(purchase.net_amount)
        credit_amount = int(purchase.credit_amount)
        share = credit_amount if full or not net else delta * credit_amount // net
        revoked = 0
        if purchase.credit_id:
            revoked = self.credits.revoke_unused(purchase.credit_id, share, now=current)

        values: Dict[str, Any] = {"refunded_amount": int(refunded_total), "updated_at": current}
        if full:
            values["status"] = PurchaseStatus.REFUNDED.value
        self.repository.transition_status(purchase.id, [PurchaseStatus.PAID.value], **values)
        self.audit.record(
            AuditAction.CREDIT_PURCHASE_REFUNDED,
            actor_id=None,
            target_id=purchase.id,
            target_type="credit_purchase",
            metadata={"refunded_total": int(refunded_total), "revoked": revoked, "full": full},
        )
        return revoked
