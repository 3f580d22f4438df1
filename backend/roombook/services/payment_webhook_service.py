# backend/roombook/services/payment_webhook_service.py
"""
Application of payment gateway webhooks.

Deliveries may repeat and arrive out of order. Each one is first recorded
in the webhook ledger and claimed (committed on its own), then applied in
a second transaction:

- PAYMENT_CONFIRMED / PAYMENT_RECEIVED: payment APPROVED, booking CONFIRMED
  or, for a credit purchase, the credit granted
- PAYMENT_REFUNDED / PAYMENT_PARTIALLY_REFUNDED: booking credits restored
  by share, or the unspent share of a purchased credit revoked
- PAYMENT_DELETED / PAYMENT_OVERDUE: open payment REJECTED, a pending
  purchase CANCELLED

Charges for purchases carry ``purchase:<id>`` (older ones ``credit_<id>``)
as their external reference; anything else is a booking id.

Any outcome, including failure, is acknowledged with 200 so the gateway
stops retrying; failures stay FAILED in the ledger and can be replayed.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.enums import BookingStatus, ContingencyFlag, PaymentStatus, WebhookEventStatus
from ..core.exceptions import NotFoundException
from ..core.timezone_utils import utc_now
from ..integrations.asaas_client import reais_to_cents
from ..models.booking import Booking
from ..models.payment import Payment
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .booking_service import BookingService
from .credit_purchase_service import CreditPurchaseService
from .webhook_ledger_service import WebhookLedgerService

logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "asaas"

CONFIRM_EVENTS = frozenset({"PAYMENT_CONFIRMED", "PAYMENT_RECEIVED"})
REFUND_EVENTS = frozenset({"PAYMENT_REFUNDED", "PAYMENT_PARTIALLY_REFUNDED"})
REJECT_EVENTS = frozenset({"PAYMENT_DELETED", "PAYMENT_OVERDUE"})
HANDLED_EVENTS = CONFIRM_EVENTS | REFUND_EVENTS | REJECT_EVENTS

PURCHASE_REFERENCE_PREFIXES = ("purchase:", "credit_")


def purchase_id_from_reference(reference: str) -> Optional[str]:
    for prefix in PURCHASE_REFERENCE_PREFIXES:
        if reference.startswith(prefix):
            return reference[len(prefix) :] or None
    return None


@dataclass
class WebhookAck:
    status: str
    event_id: Optional[str] = None
    duplicate: bool = False

    def as_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"received": True, "status": self.status}
        if self.duplicate:
            body["duplicate"] = True
        if self.event_id:
            body["eventId"] = self.event_id
        return body


class PaymentWebhookService(BaseService):
    def __init__(
        self,
        db: Session,
        booking_service: Optional[BookingService] = None,
        purchase_service: Optional[CreditPurchaseService] = None,
    ):
        super().__init__(db)
        self.bookings = booking_service or BookingService(db)
        self.purchases = purchase_service or CreditPurchaseService(
            db,
            credit_service=self.bookings.credits,
            coupon_service=self.bookings.coupons,
            payment_orchestrator=self.bookings.payments,
            audit_service=self.bookings.audit,
            contingency_service=self.bookings.contingency,
        )
        self.ledger = WebhookLedgerService(db)
        self.payment_repository = self.bookings.payments.repository
        self.booking_repository = self.bookings.booking_repository

    @BaseService.measure_operation("apply_payment_webhook")
    def apply_payment_webhook(self, payload: Dict[str, Any]) -> WebhookAck:
        event_type = str(payload.get("event") or "unknown")
        payment_data = payload.get("payment") or {}
        external_id = payment_data.get("id")
        event_id = str(payload.get("id") or f"{event_type}:{external_id}")

        if self.bookings.contingency.is_enabled(ContingencyFlag.DISABLE_WEBHOOKS):
            self.logger.warning(
                "Webhooks disabled, acknowledging %s without applying it",
                event_id,
                extra={"event_id": event_id, "event_type": event_type},
            )
            prometheus_metrics.inc_webhook_event(event_type, "disabled")
            return WebhookAck(status="DISABLED", event_id=event_id)

        with self.transaction():
            event = self.ledger.log_received(
                source=WEBHOOK_SOURCE,
                event_type=event_type,
                event_id=event_id,
                payload=payload,
            )
            claimed = not self.ledger.is_settled(event) and self.ledger.mark_processing(event)
            event_row_id = event.id
            previous_status = event.status

        if not claimed:
            self.logger.info(
                "Duplicate webhook %s (%s)",
                event_id,
                previous_status,
                extra={"event_id": event_id, "event_type": event_type},
            )
            prometheus_metrics.inc_webhook_event(event_type, "duplicate")
            return WebhookAck(status=previous_status, event_id=event_id, duplicate=True)

        started = time.monotonic()
        try:
            with self.transaction():
                status, related = self._dispatch(event_type, payment_data)
                row = self.ledger.repository.get_by_id(event_row_id)
                if row is None:
                    raise NotFoundException(
                        "Webhook event not found.", details={"event_id": event_id}
                    )
                self.ledger.mark_processed(
                    row,
                    related_entity_type=related[0] if related else None,
                    related_entity_id=related[1] if related else None,
                    duration_ms=self.ledger.elapsed_ms(started),
                    status=status,
                )
        except Exception as exc:
            self.logger.error(
                "Webhook %s failed: %s",
                event_id,
                type(exc).__name__,
                exc_info=True,
                extra={"event_id": event_id, "event_type": event_type},
            )
            with self.transaction():
                row = self.ledger.repository.get_by_id(event_row_id)
                if row is not None:
                    self.ledger.mark_failed(
                        row,
                        error=f"{type(exc).__name__}: {exc}",
                        duration_ms=self.ledger.elapsed_ms(started),
                    )
            prometheus_metrics.inc_webhook_event(event_type, "failed")
            return WebhookAck(status=WebhookEventStatus.FAILED.value, event_id=event_id)

        prometheus_metrics.inc_webhook_event(event_type, status.value.lower())
        return WebhookAck(status=status.value, event_id=event_id)

    def _locate_payment(self, data: Dict[str, Any]) -> Optional[Payment]:
        external_id = data.get("id")
        if external_id:
            payment = self.payment_repository.find_by_external_id(external_id)
            if payment is not None:
                return payment
        reference = data.get("externalReference")
        if not reference:
            return None
        purchase_id = purchase_id_from_reference(reference)
        if purchase_id is not None:
            payment = self.payment_repository.find_active_for_purchase(purchase_id)
            candidates = self.payment_repository.list_for_purchase(purchase_id)
        else:
            payment = self.payment_repository.find_active_for_booking(reference)
            candidates = self.payment_repository.list_for_booking(reference)
        if payment is None and candidates:
            payment = max(candidates, key=lambda p: p.created_at)
        if payment is not None and external_id and not payment.external_id:
            payment.external_id = external_id
        return payment

    def _dispatch(
        self, event_type: str, data: Dict[str, Any]
    ) -> Tuple[WebhookEventStatus, Optional[Tuple[str, str]]]:
        if event_type not in HANDLED_EVENTS:
            return WebhookEventStatus.IGNORED_EVENT_TYPE, None
        if not data.get("id") and not data.get("externalReference"):
            return WebhookEventStatus.IGNORED_NO_REFERENCE, None

        payment = self._locate_payment(data)
        if payment is None:
            self.logger.warning(
                "No local payment for webhook reference %s",
                data.get("id") or data.get("externalReference"),
                extra={"event_type": event_type},
            )
            return WebhookEventStatus.IGNORED_NOT_FOUND, None

        if payment.purchase_id:
            return self._dispatch_purchase(event_type, payment, data)

        booking = (
            self.booking_repository.get_for_update(payment.booking_id)
            if payment.booking_id
            else None
        )
        if event_type in CONFIRM_EVENTS:
            self._confirm(payment, booking)
        elif event_type in REFUND_EVENTS:
            self._refund(payment, booking, data)
        else:
            self._reject(payment)
        related = ("booking", payment.booking_id) if payment.booking_id else None
        return WebhookEventStatus.PROCESSED, related

    def _dispatch_purchase(
        self, event_type: str, payment: Payment, data: Dict[str, Any]
    ) -> Tuple[WebhookEventStatus, Optional[Tuple[str, str]]]:
        purchase_id = str(payment.purchase_id)
        purchase = self.purchases.repository.get_for_update(purchase_id)
        if purchase is None:
            self.logger.warning(
                "Payment %s points at unknown credit purchase %s",
                payment.id,
                purchase_id,
                extra={"payment_id": payment.id, "purchase_id": purchase_id},
            )
            return WebhookEventStatus.IGNORED_NOT_FOUND, None

        if event_type in CONFIRM_EVENTS:
            if self._approve(payment):
                self.purchases.confirm_from_payment(purchase)
        elif event_type in REFUND_EVENTS:
            refunded_total, full = self._record_refund(payment, data)
            self.purchases.refund_from_payment(purchase, refunded_total, full=full)
        elif self._reject(payment):
            self.purchases.cancel_locked(purchase, reason=event_type)
        return WebhookEventStatus.PROCESSED, ("credit_purchase", purchase_id)

    def _approve(self, payment: Payment) -> bool:
        """Record the money as received. False when the payment was already refunded."""
        if payment.status == PaymentStatus.REFUNDED.value:
            self.logger.info(
                "Confirm for already refunded payment %s ignored",
                payment.id,
                extra={"payment_id": payment.id},
            )
            return False
        if payment.status != PaymentStatus.APPROVED.value:
            # Money moved: record it even when the booking can no longer be confirmed.
            self.payment_repository.update_status(
                payment.id,
                [
                    PaymentStatus.PENDING.value,
                    PaymentStatus.IN_PROCESS.value,
                    PaymentStatus.REJECTED.value,
                ],
                status=PaymentStatus.APPROVED.value,
                paid_at=utc_now(),
                updated_at=utc_now(),
            )
        return True

    def _confirm(self, payment: Payment, booking: Optional[Booking]) -> None:
        if self._approve(payment) and booking is not None:
            self.bookings.confirm_from_payment(booking)

    def _record_refund(self, payment: Payment, data: Dict[str, Any]) -> Tuple[int, bool]:
        amount = int(payment.amount)
        reported = reais_to_cents(data.get("refundedValue")) if data.get("refundedValue") else 0
        refunded_total = min(reported or amount, amount)
        refunded_total = max(refunded_total, int(payment.refunded_amount or 0))
        full = refunded_total >= amount

        values: Dict[str, Any] = {"refunded_amount": refunded_total, "updated_at": utc_now()}
        if full:
            values["status"] = PaymentStatus.REFUNDED.value
        self.payment_repository.update_status(
            payment.id,
            [s.value for s in PaymentStatus],
            **values,
        )
        return refunded_total, full

    def _refund(self, payment: Payment, booking: Optional[Booking], data: Dict[str, Any]) -> None:
        refunded_total, full = self._record_refund(payment, data)
        if booking is None:
            return
        if booking.status != BookingStatus.CONFIRMED.value:
            self.logger.info(
                "Refund for booking %s in %s recorded on payment only",
                booking.id,
                booking.status,
                extra={"booking_id": booking.id, "payment_id": payment.id},
            )
            return
        self.bookings.refund_booking(booking, refunded_total, full=full)

    def _reject(self, payment: Payment) -> bool:
        if payment.status == PaymentStatus.APPROVED.value:
            self.logger.warning(
                "Ignoring rejection of approved payment %s",
                payment.id,
                extra={"payment_id": payment.id},
            )
            return False
        return self.payment_repository.update_status(
            payment.id,
            [PaymentStatus.PENDING.value, PaymentStatus.IN_PROCESS.value],
            status=PaymentStatus.REJECTED.value,
            updated_at=utc_now(),
        )
