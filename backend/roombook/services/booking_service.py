# backend/roombook/services/booking_service.py
"""
Booking Service

Top-level booking operations. Each one owns exactly one local transaction
for its state change; the ledgers it drives (credits, coupons, payments,
audit) write into that transaction and never commit on their own.

Creation with a cash remainder is a two-phase flow:

1. one transaction: lock room, re-check availability, debit credits,
   insert the PENDING booking, record the coupon, audit
2. after commit: create the external charge
3. if step 2 fails: a compensating transaction cancels the booking and
   gives back exactly what step 1 took

External side effects (charge cancellation, e-mail) happen after commit
and never fail the operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import (
    AuditAction,
    BookingStatus,
    CancelReason,
    CancelSource,
    CouponContext,
    FinancialStatus,
    PaymentMethod,
)
from ..core.exceptions import (
    BusinessErrorCode,
    BusinessException,
    CouponAlreadyUsedException,
    ForbiddenException,
    InvalidStateTransitionException,
    NotFoundException,
    OverlapViolation,
    PaymentCreationFailedException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..domain.business_hours import (
    validate_booking_window,
    validate_business_hours,
    validate_lead_time,
)
from ..domain.pricing import calculate_gross_amount
from ..integrations.asaas_client import PaymentCustomer, PaymentGateway
from ..models.booking import Booking
from ..models.payment import Payment
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .audit_service import AuditService
from .availability_service import AvailabilityService
from .base import BaseService
from .booking_state_machine import BookingStateMachine, TransitionOutcome, TransitionResult
from .contingency_service import ContingencyService
from .coupon_service import (
    CouponService,
    CouponTerms,
    DiscountResult,
    apply_discount,
    build_snapshot,
)
from .credit_service import CreditService
from .notification_service import NotificationService
from .payment_orchestrator import PaymentOrchestrator, PaymentResult, validate_min_amount

logger = logging.getLogger(__name__)

COMPENSATION_ATTEMPTS = 2


@dataclass
class CreateBookingCommand:
    user_id: str
    room_id: str
    start_time: datetime
    end_time: datetime
    coupon_code: Optional[str] = None
    payment_method: str = PaymentMethod.PIX.value
    customer: Optional[PaymentCustomer] = None
    actor_role: Optional[str] = None


@dataclass
class BookingCreated:
    booking: Booking
    credits_used: int
    amount_to_pay: int
    payment: Optional[PaymentResult] = None

    @property
    def payment_url(self) -> Optional[str]:
        return self.payment.checkout_url if self.payment else None


@dataclass
class CancelResult:
    booking_id: str
    already_cancelled: bool = False
    credits_restored: int = 0
    coupon_restored: bool = False


@dataclass
class RefundResult:
    booking_id: str
    refunded_delta: int
    credits_restored: int
    full: bool
    status: str


@dataclass
class _Cancellation:
    transition: TransitionResult
    credits_restored: int = 0
    coupon_restored: bool = False
    payment: Optional[Payment] = None


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Orchestrates availability, the credit and coupon ledgers, the payment
    orchestrator and the state machine.
    """

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        notification_service: Optional[NotificationService] = None,
        contingency_service: Optional[ContingencyService] = None,
    ):
        super().__init__(db)
        self.room_repository = RepositoryFactory.create_room_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.audit = AuditService(db)
        self.availability = AvailabilityService(db, self.booking_repository)
        self.credits = CreditService(db)
        self.coupons = CouponService(db, audit_service=self.audit)
        self.payments = PaymentOrchestrator(db, gateway=gateway)
        self.state_machine = BookingStateMachine(db, self.booking_repository, self.audit)
        self.contingency = contingency_service or ContingencyService(db)
        self.notifications = notification_service or NotificationService(
            db, contingency=self.contingency
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_booking_with_credit")
    def create_booking_with_credit(
        self,
        command: CreateBookingCommand,
        *,
        now: Optional[datetime] = None,
    ) -> BookingCreated:
        """
        Create a booking funded by credits first and cash for the rest.

        Raises the business error of the first rule that fails; nothing is
        written in that case. Raises PAYMENT_CREATION_FAILED after the
        booking was compensated.
        """
        current = ensure_utc(now or utc_now())
        start, end = ensure_utc(command.start_time), ensure_utc(command.end_time)
        method = PaymentMethod(command.payment_method.upper()).value

        self.contingency.ensure_bookings_open(requires_payment=False)
        room = self.room_repository.get_active(command.room_id)
        if room is None:
            raise NotFoundException("Room not found.", details={"room_id": command.room_id})

        validate_business_hours(start, end)
        validate_lead_time(
            start,
            now=current,
            requires_payment=False,
            min_advance_minutes=settings.min_advance_minutes,
        )
        validate_booking_window(start, end, now=current, window_days=settings.booking_window_days)

        gross = calculate_gross_amount(room, start, end)
        terms: Optional[CouponTerms] = None
        priced = DiscountResult(gross=gross, discount=0, final=gross)
        context = CouponContext.BOOKING.value
        if command.coupon_code:
            terms = self.coupons.resolve(
                command.coupon_code,
                gross,
                user_id=command.user_id,
                context=context,
                actor_role=command.actor_role,
                now=current,
            )
            priced = apply_discount(gross, terms.discount_type, terms.value)

        net = priced.final
        balance = self.credits.get_balance(command.user_id, room, start, end, now=current)
        credits_to_use = min(balance, net)
        amount_to_pay = net - credits_to_use

        if terms is not None and amount_to_pay == 0:
            raise BusinessException(
                BusinessErrorCode.COUPON_REQUIRES_CASH_PAYMENT,
                details={"coupon_code": terms.code},
            )
        if amount_to_pay > 0:
            self.contingency.ensure_bookings_open(requires_payment=True)
            validate_min_amount(amount_to_pay, method)
            validate_lead_time(
                start,
                now=current,
                requires_payment=True,
                min_advance_minutes=settings.min_advance_minutes,
            )

        booking = self._persist_new_booking(
            command,
            room_id=room.id,
            start=start,
            end=end,
            priced=priced,
            terms=terms,
            credits_to_use=credits_to_use,
            amount_to_pay=amount_to_pay,
            method=method,
            now=current,
        )

        payment: Optional[PaymentResult] = None
        if amount_to_pay > 0:
            payment = self._create_payment(booking, command, amount_to_pay, method)
        else:
            self.notifications.send_booking_confirmation(booking)

        return BookingCreated(
            booking=booking,
            credits_used=credits_to_use,
            amount_to_pay=amount_to_pay,
            payment=payment,
        )

    def _persist_new_booking(
        self,
        command: CreateBookingCommand,
        *,
        room_id: str,
        start: datetime,
        end: datetime,
        priced: DiscountResult,
        terms: Optional[CouponTerms],
        credits_to_use: int,
        amount_to_pay: int,
        method: str,
        now: datetime,
    ) -> Booking:
        fully_funded = amount_to_pay == 0
        with self.transaction():
            room = self.room_repository.lock_for_booking(room_id)
            if room is None:
                raise NotFoundException("Room not found.", details={"room_id": room_id})
            self.availability.ensure_available(room_id, start, end)

            debit = self.credits.debit(
                command.user_id, room, credits_to_use, start, end, now=now
            )
            try:
                booking = self.booking_repository.create(
                    room_id=room_id,
                    user_id=command.user_id,
                    start_time=start,
                    end_time=end,
                    status=(
                        BookingStatus.CONFIRMED.value
                        if fully_funded
                        else BookingStatus.PENDING.value
                    ),
                    financial_status=(
                        FinancialStatus.PAID.value
                        if fully_funded
                        else FinancialStatus.PENDING_PAYMENT.value
                    ),
                    gross_amount=priced.gross,
                    discount_amount=priced.discount,
                    net_amount=priced.final,
                    credits_used=debit.total,
                    amount_to_pay=amount_to_pay,
                    amount_paid=debit.total,
                    refunded_amount=0,
                    payment_method=None if fully_funded else method,
                    credit_ids=debit.credit_ids,
                    credit_allocations=debit.allocations,
                    coupon_code=terms.code if terms else None,
                    coupon_snapshot=build_snapshot(terms, priced, now) if terms else None,
                    expires_at=(
                        None
                        if fully_funded
                        else now + timedelta(hours=settings.pending_booking_expiration_hours)
                    ),
                    confirmed_at=now if fully_funded else None,
                )
            except OverlapViolation as exc:
                raise AvailabilityService.conflict_from_violation(exc, room_id) from exc

            if terms is not None:
                usage = self.coupons.record_usage(
                    command.user_id, terms, CouponContext.BOOKING.value, booking.id
                )
                if usage.already_used:
                    raise CouponAlreadyUsedException(terms.code)

            self.audit.record(
                AuditAction.BOOKING_CREATED,
                actor_id=command.user_id,
                target_id=booking.id,
                metadata={
                    "room_id": room_id,
                    "start_time": start,
                    "end_time": end,
                    "status": booking.status,
                    "net_amount": priced.final,
                    "credits_used": debit.total,
                    "credit_ids": debit.credit_ids,
                    "amount_to_pay": amount_to_pay,
                    "coupon_code": terms.code if terms else None,
                },
            )

        self.logger.info(
            "Booking %s created (%s)",
            booking.id,
            booking.status,
            extra={
                "booking_id": booking.id,
                "room_id": room_id,
                "credits_used": debit.total,
                "amount_to_pay": amount_to_pay,
            },
        )
        return booking

    def _create_payment(
        self,
        booking: Booking,
        command: CreateBookingCommand,
        amount_to_pay: int,
        method: str,
    ) -> PaymentResult:
        customer = command.customer or PaymentCustomer(
            name=command.user_id, email=f"{command.user_id}@users.invalid"
        )
        try:
            return self.payments.create_idempotent(
                entity_id=booking.id,
                user_id=command.user_id,
                amount_cents=amount_to_pay,
                method=method,
                customer=customer,
                description=f"Room booking {booking.id}",
            )
        except Exception as exc:
            self.logger.error(
                "Payment creation failed for booking %s, compensating",
                booking.id,
                extra={"booking_id": booking.id, "error_type": type(exc).__name__},
            )
            self.db.rollback()
            self.compensate_failed_payment(booking.id)
            raise PaymentCreationFailedException(booking.id) from exc

    @BaseService.measure_operation("compensate_failed_payment")
    def compensate_failed_payment(self, booking_id: str, *, now: Optional[datetime] = None) -> bool:
        """
        Undo a PENDING booking whose charge could not be created.

        Retried once. When both attempts fail the booking is left for manual
        reconciliation and an ERROR is logged; the caller still receives
        PAYMENT_CREATION_FAILED.
        """
        current = ensure_utc(now or utc_now())
        for attempt in range(1, COMPENSATION_ATTEMPTS + 1):
            try:
                with self.transaction():
                    booking = self.booking_repository.get_for_update(booking_id)
                    if booking is None:
                        raise NotFoundException("Booking not found.")
                    outcome = self.cancel_locked(
                        booking,
                        reason=CancelReason.PAYMENT_CREATION_FAILED,
                        source=CancelSource.SYSTEM,
                        actor_id=None,
                        action=AuditAction.PAYMENT_COMPENSATED,
                        now=current,
                    )
                prometheus_metrics.inc_compensation("success")
                self.logger.info(
                    "Compensated booking %s: restored %s cents",
                    booking_id,
                    outcome.credits_restored,
                    extra={"booking_id": booking_id, "attempt": attempt},
                )
                return True
            except Exception:
                self.logger.warning(
                    "Compensation attempt %s failed for booking %s",
                    attempt,
                    booking_id,
                    exc_info=True,
                    extra={"booking_id": booking_id, "attempt": attempt},
                )
        prometheus_metrics.inc_compensation("failed")
        self.logger.error(
            "Compensation failed for booking %s, manual reconciliation required",
            booking_id,
            extra={"evt": "compensation_failed", "booking_id": booking_id},
        )
        return False

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel_locked(
        self,
        booking: Booking,
        *,
        reason: CancelReason,
        source: CancelSource,
        actor_id: Optional[str],
        action: AuditAction = AuditAction.BOOKING_CANCELLED,
        now: Optional[datetime] = None,
    ) -> _Cancellation:
        """
        Cancel a row-locked booking inside the caller's transaction.

        Gives back every credit still outstanding, the coupon when no cash
        ever changed hands, and rejects the open payment. Nothing is
        restored unless this call actually performed the transition.
        """
        current = ensure_utc(now or utc_now())
        was_paid = booking.financial_status == FinancialStatus.PAID.value
        result = self.state_machine.transition(
            booking,
            BookingStatus.CANCELLED,
            actor_id=actor_id,
            source=source.value,
            values={
                "cancel_reason": reason.value,
                "cancel_source": source.value,
                "cancelled_at": current,
            },
        )
        if not result.applied:
            return _Cancellation(transition=result)

        credits_restored = self.credits.restore_for_booking(booking, now=current)
        payment_confirmed = was_paid or self.payments.has_confirmed_payment(booking.id)
        coupon_restored = self.coupons.restore_for_booking(
            booking, payment_confirmed=payment_confirmed, actor_id=actor_id, now=current
        )
        payment = self.payments.reject_active(booking.id)
        self.audit.record(
            action,
            actor_id=actor_id,
            target_id=booking.id,
            metadata={
                "reason": reason,
                "source": source,
                "previous_status": result.previous,
                "credits_restored": credits_restored,
                "coupon_restored": coupon_restored,
            },
        )
        return _Cancellation(
            transition=result,
            credits_restored=credits_restored,
            coupon_restored=coupon_restored,
            payment=payment,
        )

    @BaseService.measure_operation("cancel_pending_booking")
    def cancel_pending_booking(
        self,
        user_id: str,
        booking_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> CancelResult:
        """Owner cancels their own PENDING booking."""
        with self.transaction():
            booking = self.booking_repository.get_for_update(booking_id)
            if booking is None:
                raise NotFoundException("Booking not found.", details={"booking_id": booking_id})
            if booking.user_id != user_id:
                raise ForbiddenException("You can only cancel your own bookings.")
            if booking.status == BookingStatus.CANCELLED.value:
                return CancelResult(booking_id=booking_id, already_cancelled=True)
            if booking.status != BookingStatus.PENDING.value:
                raise InvalidStateTransitionException(
                    booking.status, BookingStatus.CANCELLED.value
                )
            outcome = self.cancel_locked(
                booking,
                reason=CancelReason.USER_CANCELLED_PENDING,
                source=CancelSource.USER,
                actor_id=user_id,
                now=now,
            )

        if not outcome.transition.applied:
            # Someone else cancelled between our read and our write.
            return CancelResult(booking_id=booking_id, already_cancelled=True)
        self.payments.cancel_external(outcome.payment)
        return CancelResult(
            booking_id=booking_id,
            credits_restored=outcome.credits_restored,
            coupon_restored=outcome.coupon_restored,
        )

    @BaseService.measure_operation("admin_cancel_booking")
    def admin_cancel_booking(
        self,
        admin_id: str,
        booking_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> CancelResult:
        """Administrative cancellation of a PENDING or CONFIRMED booking."""
        with self.transaction():
            booking = self.booking_repository.get_for_update(booking_id)
            if booking is None:
                raise NotFoundException("Booking not found.", details={"booking_id": booking_id})
            if booking.status == BookingStatus.CANCELLED.value:
                return CancelResult(booking_id=booking_id, already_cancelled=True)
            outcome = self.cancel_locked(
                booking,
                reason=CancelReason.ADMIN_CANCELLED,
                source=CancelSource.ADMIN,
                actor_id=admin_id,
                now=now,
            )

        outcome.transition.raise_if_blocked()
        self.payments.cancel_external(outcome.payment)
        return CancelResult(
            booking_id=booking_id,
            credits_restored=outcome.credits_restored,
            coupon_restored=outcome.coupon_restored,
        )

    # ------------------------------------------------------------------
    # Payment-driven transitions (run inside the webhook transaction)
    # ------------------------------------------------------------------

    def confirm_from_payment(
        self,
        booking: Booking,
        *,
        source: str = CancelSource.WEBHOOK.value,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """PENDING -> CONFIRMED/PAID. Idempotent; blocked for cancelled or refunded bookings."""
        current = ensure_utc(now or utc_now())
        result = self.state_machine.transition(
            booking,
            BookingStatus.CONFIRMED,
            actor_id=None,
            source=source,
            values={
                "financial_status": FinancialStatus.PAID.value,
                "confirmed_at": current,
                "expires_at": None,
            },
        )
        if result.applied:
            self.audit.record(
                AuditAction.BOOKING_CONFIRMED,
                actor_id=None,
                target_id=booking.id,
                metadata={"source": source},
            )
        return result

    def refund_booking(
        self,
        booking: Booking,
        refunded_total: int,
        *,
        full: bool,
        source: str = CancelSource.WEBHOOK.value,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RefundResult:
        """
        Apply a cumulative refund of ``refunded_total`` cents to a CONFIRMED booking.

        A partial refund gives back the refunded share of the credits
        (``delta * credits_used // net_amount``) and keeps the booking
        CONFIRMED. A full refund gives back everything still outstanding
        and moves the booking to REFUNDED. Coupons are never restored.
        """
        current = ensure_utc(now or utc_now())
        net = int(booking.net_amount)
        previous = int(booking.refunded_amount or 0)
        total = max(0, min(int(refunded_total), net))
        delta = total - previous
        status = booking.status

        if booking.status != BookingStatus.CONFIRMED.value or (delta <= 0 and not full):
            self.logger.info(
                "Refund for booking %s not applied (status=%s, delta=%s)",
                booking.id,
                status,
                delta,
                extra={"booking_id": booking.id},
            )
            return RefundResult(booking.id, 0, 0, full, status)

        if delta > 0:
            booking.refunded_amount = total
        if full:
            restored = self.credits.restore_for_booking(booking, now=current)
            result = self.state_machine.transition(
                booking, BookingStatus.REFUNDED, actor_id=actor_id, source=source
            )
            status = result.target if result.applied else result.previous
            action = AuditAction.BOOKING_REFUNDED
        else:
            share = (max(delta, 0) * int(booking.credits_used or 0)) // net if net else 0
            restored = self.credits.restore_for_booking(booking, share, now=current)
            action = AuditAction.BOOKING_PARTIALLY_REFUNDED

        self.audit.record(
            action,
            actor_id=actor_id,
            target_id=booking.id,
            metadata={
                "refunded_total": total,
                "refunded_delta": max(delta, 0),
                "credits_restored": restored,
                "source": source,
            },
        )
        return RefundResult(booking.id, max(delta, 0), restored, full, status)

    # ------------------------------------------------------------------
    # Admin update
    # ------------------------------------------------------------------

    @BaseService.measure_operation("admin_update_booking")
    def admin_update_booking(
        self,
        admin_id: str,
        booking_id: str,
        *,
        status: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Generic administrative patch.

        ``status=CANCELLED`` is refused: cancellation has its own flow. A
        status change goes through the state machine; a refused change is
        audited, committed, then raised as INVALID_STATE_TRANSITION.
        """
        if status is not None and status.upper() == BookingStatus.CANCELLED.value:
            raise ValidationException(
                "Use the cancel operation to cancel a booking.",
                details={"reason": "USE_CANCEL_FLOW"},
            )
        target = BookingStatus(status.upper()) if status is not None else None
        current = ensure_utc(now or utc_now())

        blocked: Optional[TransitionResult] = None
        with self.transaction():
            booking = self.booking_repository.get_for_update(booking_id)
            if booking is None:
                raise NotFoundException("Booking not found.", details={"booking_id": booking_id})
            changes: Dict[str, Any] = {}

            if target is not None:
                result = self._admin_status_change(booking, target, admin_id, current)
                if result.outcome is TransitionOutcome.BLOCKED:
                    blocked = result
                elif result.applied:
                    changes["status"] = {"from": result.previous, "to": result.target}

            if blocked is None and (start_time is not None or end_time is not None):
                changes.update(self._admin_reschedule(booking, start_time, end_time))

            if changes:
                self.audit.record(
                    AuditAction.BOOKING_UPDATED,
                    actor_id=admin_id,
                    target_id=booking.id,
                    metadata={"changes": changes},
                )

        if blocked is not None:
            blocked.raise_if_blocked()
        return booking

    def _admin_status_change(
        self, booking: Booking, target: BookingStatus, admin_id: str, now: datetime
    ) -> TransitionResult:
        if target is BookingStatus.REFUNDED and booking.status == BookingStatus.CONFIRMED.value:
            refund = self.refund_booking(
                booking,
                int(booking.net_amount),
                full=True,
                source=CancelSource.ADMIN.value,
                actor_id=admin_id,
                now=now,
            )
            outcome = (
                TransitionOutcome.APPLIED
                if refund.status == BookingStatus.REFUNDED.value
                else TransitionOutcome.NOOP
            )
            return TransitionResult(outcome, BookingStatus.CONFIRMED.value, refund.status)
        if target is BookingStatus.CONFIRMED:
            return self.state_machine.transition(
                booking,
                target,
                actor_id=admin_id,
                source=CancelSource.ADMIN.value,
                values={
                    "financial_status": FinancialStatus.PAID.value,
                    "confirmed_at": now,
                    "expires_at": None,
                },
            )
        return self.state_machine.transition(
            booking, target, actor_id=admin_id, source=CancelSource.ADMIN.value
        )

    def _admin_reschedule(
        self,
        booking: Booking,
        start_time: Optional[datetime],
        end_time: Optional[datetime],
    ) -> Dict[str, Any]:
        if booking.status not in (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value):
            raise InvalidStateTransitionException(booking.status, booking.status)
        new_start = ensure_utc(start_time or booking.start_time)
        new_end = ensure_utc(end_time or booking.end_time)
        validate_business_hours(new_start, new_end)
        self.room_repository.lock_for_booking(booking.room_id)
        self.availability.ensure_available(
            booking.room_id, new_start, new_end, exclude_booking_id=booking.id
        )
        previous = {
            "start_time": ensure_utc(booking.start_time),
            "end_time": ensure_utc(booking.end_time),
        }
        booking.start_time = new_start
        booking.end_time = new_end
        try:
            self.booking_repository.flush()
        except OverlapViolation as exc:
            raise AvailabilityService.conflict_from_violation(exc, booking.room_id) from exc
        return {"time": {"from": previous, "to": {"start_time": new_start, "end_time": new_end}}}
