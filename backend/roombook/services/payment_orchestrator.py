# backend/roombook/services/payment_orchestrator.py
"""
Payment orchestration.

Creates at most one external charge per ``(entity, method)``. The key
``<entityKind>:<entityId>:<method>`` is reserved in the ``payments`` table
(unique) and committed *before* the gateway is called, so a retried or
concurrent request finds the reservation and never reaches the gateway a
second time. The gateway call itself always runs outside any database
transaction.

Sequence for a new charge:

    reserve PENDING row (commit) -> gateway.create_charge -> store reference (commit)
                                         |
                                         +-- failure: row -> REJECTED (commit), re-raise

A REJECTED reservation may be re-claimed by a later attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import PaymentEntityKind, PaymentMethod, PaymentStatus
from ..core.exceptions import (
    ConflictException,
    NotFoundException,
    PaymentMinAmountException,
    ServiceException,
    UniqueViolation,
)
from ..core.timezone_utils import utc_now
from ..integrations.asaas_client import (
    PaymentCustomer,
    PaymentGateway,
    PaymentGatewayError,
    get_payment_gateway,
)
from ..models.payment import Payment
from ..repositories.factory import RepositoryFactory
from ..repositories.payment_repository import PaymentRepository
from .base import BaseService

logger = logging.getLogger(__name__)

CONFIRMED_PAYMENT_STATUSES = (PaymentStatus.APPROVED.value, PaymentStatus.REFUNDED.value)


def build_idempotency_key(entity_kind: PaymentEntityKind, entity_id: str, method: str) -> str:
    return f"{entity_kind.value}:{entity_id}:{method.upper()}"


def build_external_reference(entity_kind: PaymentEntityKind, entity_id: str) -> str:
    """Reference echoed back by the gateway; bookings keep their bare id."""
    if entity_kind is PaymentEntityKind.BOOKING:
        return entity_id
    return f"{entity_kind.value}:{entity_id}"


@dataclass(frozen=True)
class PaymentResult:
    payment_id: str
    checkout_url: Optional[str]
    external_id: Optional[str]
    pix_payload: Optional[str] = None
    reused: bool = False

    @classmethod
    def from_payment(cls, payment: Payment, *, reused: bool) -> "PaymentResult":
        return cls(
            payment_id=payment.id,
            checkout_url=payment.external_url,
            external_id=payment.external_id,
            pix_payload=payment.pix_payload,
            reused=reused,
        )


def validate_min_amount(amount_cents: int, method: str) -> None:
    """Raise PAYMENT_MIN_AMOUNT when the gateway would refuse the amount."""
    minimum = settings.min_payment_amount_cents(method)
    if amount_cents < minimum:
        raise PaymentMinAmountException(minimum, amount_cents, method.upper())


class PaymentOrchestrator(BaseService):
    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        payment_repository: Optional[PaymentRepository] = None,
    ):
        super().__init__(db)
        self.gateway: PaymentGateway = gateway or get_payment_gateway()
        self.repository = payment_repository or RepositoryFactory.create_payment_repository(db)

    def _reusable(
        self, key: str, entity_id: str, entity_kind: PaymentEntityKind
    ) -> Optional[Payment]:
        existing = self.repository.find_by_idempotency_key(key)
        if existing is not None and existing.is_active:
            return existing
        if entity_kind is PaymentEntityKind.BOOKING:
            return self.repository.find_active_for_booking(entity_id)
        return self.repository.find_active_for_purchase(entity_id)

    @BaseService.measure_operation("create_idempotent")
    def create_idempotent(
        self,
        *,
        entity_id: str,
        user_id: str,
        amount_cents: int,
        method: str,
        customer: PaymentCustomer,
        description: str,
        entity_kind: PaymentEntityKind = PaymentEntityKind.BOOKING,
    ) -> PaymentResult:
        """
        Return the checkout for ``entity_id``, creating the charge at most once.

        Runs after the booking transaction committed and owns its own
        commits. Gateway errors propagate after the reservation is marked
        REJECTED, so the caller can compensate.
        """
        method = PaymentMethod(method.upper()).value
        key = build_idempotency_key(entity_kind, entity_id, method)

        existing = self._reusable(key, entity_id, entity_kind)
        if existing is not None:
            return self._reuse(existing)

        validate_min_amount(amount_cents, method)
        payment = self._reserve(key, entity_id, user_id, amount_cents, method, entity_kind)
        if payment.external_url:
            return PaymentResult.from_payment(payment, reused=True)

        try:
            charge = self.gateway.create_charge(
                customer=customer,
                amount_cents=amount_cents,
                method=method,
                description=description,
                external_reference=build_external_reference(entity_kind, entity_id),
                idempotency_key=key,
            )
        except Exception as exc:
            self.logger.error(
                "Gateway charge failed for %s",
                key,
                exc_info=True,
                extra={"idempotency_key": key, "error_type": type(exc).__name__},
            )
            with self.transaction():
                self.repository.update_status(
                    payment.id,
                    [PaymentStatus.PENDING.value],
                    status=PaymentStatus.REJECTED.value,
                    updated_at=utc_now(),
                )
            raise

        pix_payload = self._pix_payload(charge["external_id"]) if method == "PIX" else None
        with self.transaction():
            stored = self.repository.get_by_id(payment.id)
            if stored is None:
                raise ServiceException(
                    "Payment reservation disappeared before it was completed.",
                    details={"payment_id": payment.id},
                )
            stored.external_id = charge["external_id"]
            stored.external_url = charge.get("checkout_url")
            stored.pix_payload = pix_payload
            self.repository.flush()

        self.logger.info(
            "Created %s charge %s for %s",
            method,
            charge["external_id"],
            entity_id,
            extra={"idempotency_key": key, "payment_id": stored.id},
        )
        return PaymentResult.from_payment(stored, reused=False)

    def _reuse(self, payment: Payment) -> PaymentResult:
        if not payment.external_url and payment.status == PaymentStatus.PENDING.value:
            raise ConflictException(
                "A payment for this booking is already being created.",
                details={"payment_id": payment.id},
            )
        self.logger.info(
            "Reusing payment %s (%s)",
            payment.id,
            payment.idempotency_key,
            extra={"payment_id": payment.id},
        )
        return PaymentResult.from_payment(payment, reused=True)

    def _reserve(
        self,
        key: str,
        entity_id: str,
        user_id: str,
        amount_cents: int,
        method: str,
        entity_kind: PaymentEntityKind,
    ) -> Payment:
        """Commit a PENDING row for ``key`` or fail with CONFLICT."""
        rejected = self.repository.find_by_idempotency_key(key)
        try:
            with self.transaction():
                if rejected is not None:
                    claimed = self.repository.update_status(
                        rejected.id,
                        [PaymentStatus.REJECTED.value],
                        status=PaymentStatus.PENDING.value,
                        amount=amount_cents,
                        external_id=None,
                        external_url=None,
                        pix_payload=None,
                        updated_at=utc_now(),
                    )
                    if not claimed:
                        raise ConflictException(
                            "A payment for this booking is already being created.",
                            details={"payment_id": rejected.id},
                        )
                    payment = self.repository.get_by_id(rejected.id)
                    if payment is None:
                        raise NotFoundException(
                            "Payment not found.", details={"payment_id": rejected.id}
                        )
                    return payment
                is_booking = entity_kind is PaymentEntityKind.BOOKING
                return self.repository.create(
                    booking_id=entity_id if is_booking else None,
                    purchase_id=None if is_booking else entity_id,
                    user_id=user_id,
                    amount=amount_cents,
                    method=method,
                    status=PaymentStatus.PENDING.value,
                    idempotency_key=key,
                )
        except UniqueViolation:
            self.logger.info(
                "Lost payment reservation race for %s", key, extra={"idempotency_key": key}
            )
            winner = self._reusable(key, entity_id, entity_kind)
            if winner is None:
                raise
            return self._reuse_or_conflict(winner)

    def _reuse_or_conflict(self, payment: Payment) -> Payment:
        if payment.external_url:
            return payment
        raise ConflictException(
            "A payment for this booking is already being created.",
            details={"payment_id": payment.id},
        )

    def _pix_payload(self, external_id: str) -> Optional[str]:
        try:
            pix = self.gateway.get_pix_code(external_id)
        except PaymentGatewayError:
            self.logger.warning(
                "PIX code unavailable for %s", external_id, extra={"external_id": external_id}
            )
            return None
        return pix.get("payload") if pix else None

    def reject_active(self, booking_id: str) -> Optional[Payment]:
        """
        Mark the booking's open (not yet approved) payment REJECTED.

        Runs inside the caller's transaction. Returns the payment so the
        caller can cancel the external charge after commit.
        """
        payment = self.repository.find_active_for_booking(booking_id)
        if payment is None or payment.status == PaymentStatus.APPROVED.value:
            return None
        self.repository.update_status(
            payment.id,
            [PaymentStatus.PENDING.value, PaymentStatus.IN_PROCESS.value],
            status=PaymentStatus.REJECTED.value,
            updated_at=utc_now(),
        )
        return payment

    def has_confirmed_payment(self, booking_id: str) -> bool:
        return any(
            p.status in CONFIRMED_PAYMENT_STATUSES
            for p in self.repository.list_for_booking(booking_id)
        )

    def cancel_external(self, payment: Optional[Payment]) -> bool:
        """Best effort: a gateway failure here never undoes a local cancellation."""
        if payment is None or not payment.external_id:
            return False
        try:
            return bool(self.gateway.cancel_charge(payment.external_id))
        except Exception:
            self.logger.warning(
                "Could not cancel external charge %s",
                payment.external_id,
                exc_info=True,
                extra={"payment_id": payment.id, "external_id": payment.external_id},
            )
            return False
