"""
Booking operations end to end against SQLite with the fake gateway.

Credits pay first, cash covers the rest; every failure path must leave the
credit and coupon ledgers exactly as they were.
"""

from datetime import timedelta

import pytest

from roombook.core.enums import (
    AuditAction,
    BookingStatus,
    CancelReason,
    ContingencyFlag,
    CouponUsageStatus,
    FinancialStatus,
    PaymentStatus,
)
from roombook.core.exceptions import (
    BookingConflictException,
    BusinessErrorCode,
    BusinessException,
    ForbiddenException,
    InvalidStateTransitionException,
    NotFoundException,
    PaymentCreationFailedException,
    ServiceUnavailableException,
    ValidationException,
)
from roombook.core.timezone_utils import ensure_utc
from roombook.integrations.asaas_client import AsaasError, FakeAsaasClient
from roombook.models.audit_event import AuditEvent
from roombook.models.booking import Booking
from roombook.models.coupon import CouponUsage
from roombook.models.credit import Credit
from roombook.models.payment import Payment
from roombook.services.booking_service import BookingService, CreateBookingCommand
from roombook.services.contingency_service import ContingencyService


ADMIN_ID = "01JADMIN000000000000000000"
OTHER_USER = "01JOTHERUSER00000000000000"


class FailingGateway(FakeAsaasClient):
    def create_charge(self, **kwargs):
        raise AsaasError("Gateway unavailable", status_code=503)


def _command(user_id, room, start, end, **overrides):
    return CreateBookingCommand(
        user_id=user_id, room_id=room.id, start_time=start, end_time=end, **overrides
    )


def _actions(db, booking_id):
    return [
        e.action
        for e in db.query(AuditEvent)
        .filter(AuditEvent.target_id == booking_id)
        .order_by(AuditEvent.occurred_at, AuditEvent.id)
    ]


class TestCreateBookingWithCredit:
    def test_fully_credit_funded_booking_is_confirmed(
        self, db, booking_service, make_credit, room, user_id, window, now
    ):
        credit = make_credit(user_id, 10000)
        created = booking_service.create_booking_with_credit(
            _command(user_id, room, *window(10)), now=now
        )

        booking = created.booking
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.financial_status == FinancialStatus.PAID.value
        assert created.credits_used == 5000
        assert created.amount_to_pay == 0
        assert created.payment_url is None
        assert booking.expires_at is None
        assert booking.consumed_allocations == {credit.id: 5000}

        db.refresh(credit)
        assert credit.remaining_amount == 5000
        assert db.query(Payment).count() == 0
        assert _actions(db, booking.id) == [AuditAction.BOOKING_CREATED.value]

    def test_cash_remainder_creates_pending_booking_with_checkout(
        self, db, booking_service, gateway, make_credit, room, user_id, window, now
    ):
        make_credit(user_id, 3000)
        created = booking_service.create_booking_with_credit(
            _command(user_id, room, *window(10)), now=now
        )

        booking = created.booking
        assert booking.status == BookingStatus.PENDING.value
        assert booking.financial_status == FinancialStatus.PENDING_PAYMENT.value
        assert created.credits_used == 3000
        assert created.amount_to_pay == 2000
        assert created.payment_url.startswith("http://testserver/mock-payment")
        assert ensure_utc(booking.expires_at) == now + timedelta(hours=24)

        (charge,) = gateway.charges.values()
        assert charge["amount_cents"] == 2000
        assert charge["external_reference"] == booking.id
        payment = db.query(Payment).one()
        assert payment.booking_id == booking.id
        assert payment.status == PaymentStatus.PENDING.value

    def test_no_credits_pays_everything(self, booking_service, room, user_id, window, now):
        created = booking_service.create_booking_with_credit(
            _command(user_id, room, *window(10, hours=2)), now=now
        )
        assert created.credits_used == 0
        assert created.amount_to_pay == 10000

    def test_coupon_with_cash_payment(
        self, db, booking_service, make_coupon, room, user_id, window, now
    ):
        make_coupon("PROMO10", value=1000)
        created = booking_service.create_booking_with_credit(
            _command(user_id, room, *window(10), coupon_code="promo10"), now=now
        )

        booking = created.booking
        assert booking.gross_amount == 5000
        assert booking.discount_amount == 1000
        assert booking.net_amount == 4000
        assert created.amount_to_pay == 4000
        assert booking.coupon_code == "PROMO10"
        assert booking.coupon_snapshot["applied_discount"] == 1000
        usage = db.query(CouponUsage).one()
        assert usage.booking_id == booking.id
        assert usage.status == CouponUsageStatus.USED.value

    def test_coupon_requires_cash_payment(
        self, db, booking_service, make_credit, make_coupon, room, user_id, window, now
    ):
        credit = make_credit(user_id, 10000)
        make_coupon("PROMO10", value=1000)

        with pytest.raises(BusinessException) as exc_info:
            booking_service.create_booking_with_credit(
                _command(user_id, room, *window(10), coupon_code="PROMO10"), now=now
            )

        assert exc_info.value.code == BusinessErrorCode.COUPON_REQUIRES_CASH_PAYMENT
        assert db.query(Booking).count() == 0
        assert db.query(CouponUsage).count() == 0
        db.refresh(credit)
        assert credit.remaining_amount == 10000

    def test_overlap_is_rejected_without_side_effects(
        self, db, booking_service, make_booking, make_credit, room, user_id, window, now
    ):
        make_booking(OTHER_USER, room, *window(10))
        credit = make_credit(user_id, 10000)

        with pytest.raises(BookingConflictException):
            booking_service.create_booking_with_credit(
                _command(user_id, room, *window(10)), now=now
            )

        db.refresh(credit)
        assert credit.remaining_amount == 10000
        assert db.query(Booking).count() == 1

    def test_second_booking_for_same_slot_conflicts(
        self, booking_service, room, user_id, window, now
    ):
        booking_service.create_booking_with_credit(_command(user_id, room, *window(10)), now=now)
        with pytest.raises(BookingConflictException):
            booking_service.create_booking_with_credit(
                _command(OTHER_USER, room, *window(10)), now=now
            )

    def test_sunday_is_rejected(self, db, booking_service, room, user_id, window, now):
        with pytest.raises(BusinessException) as exc_info:
            booking_service.create_booking_with_credit(
                _command(user_id, room, *window(10, day=25)), now=now
            )
        assert exc_info.value.code == BusinessErrorCode.BOOKING_OUTSIDE_HOURS
        assert db.query(Booking).count() == 0

    def test_short_notice_with_cash_payment(self, booking_service, room, user_id, now):
        start = now + timedelta(minutes=60)
        with pytest.raises(BusinessException) as exc_info:
            booking_service.create_booking_with_credit(
                _command(user_id, room, start, start + timedelta(hours=1)),
                now=now + timedelta(minutes=45),
            )
        assert exc_info.value.code == BusinessErrorCode.INSUFFICIENT_TIME

    def test_cash_remainder_below_gateway_minimum(
        self, db, booking_service, make_credit, room, user_id, window, now
    ):
        credit = make_credit(user_id, 4950)
        with pytest.raises(BusinessException) as exc_info:
            booking_service.create_booking_with_credit(
                _command(user_id, room, *window(10)), now=now
            )
        assert exc_info.value.code == BusinessErrorCode.PAYMENT_MIN_AMOUNT
        db.refresh(credit)
        assert credit.remaining_amount == 4950

    def test_unknown_room(self, booking_service, user_id, window, now):
        command = CreateBookingCommand(
            user_id=user_id,
            room_id="01JMISSINGROOM000000000000",
            start_time=window(10)[0],
            end_time=window(10)[1],
        )
        with pytest.raises(NotFoundException):
            booking_service.create_booking_with_credit(command, now=now)

    def test_bookings_disabled(self, db, booking_service, room, user_id, window, now):
        ContingencyService(db).set_flag(ContingencyFlag.DISABLE_BOOKINGS, True)
        with pytest.raises(ServiceUnavailableException):
            booking_service.create_booking_with_credit(
                _command(user_id, room, *window(10)), now=now
            )

    def test_payments_disabled_still_allows_credit_bookings(
        self, db, booking_service, make_credit, room, user_id, window, now
    ):
        ContingencyService(db).set_flag(ContingencyFlag.DISABLE_PAYMENTS, True)
        with pytest.raises(ServiceUnavailableException):
            booking_service.create_booking_with_credit(
                _command(user_id, room, *window(10)), now=now
            )

        make_credit(user_id, 5000)
        created = booking_service.create_booking_with_credit(
            _command(user_id, room, *window(10)), now=now
        )
        assert created.booking.status == BookingStatus.CONFIRMED.value


class TestPaymentCompensation:
    def test_failed_charge_cancels_and_restores_everything(
        self, db, make_credit, make_coupon, room, user_id, window, now
    ):
        service = BookingService(db, gateway=FailingGateway())
        credit = make_credit(user_id, 3000)
        coupon = make_coupon("PROMO10", value=1000)

        with pytest.raises(PaymentCreationFailedException) as exc_info:
            service.create_booking_with_credit(
                _command(user_id, room, *window(10), coupon_code="PROMO10"), now=now
            )
        assert exc_info.value.code == BusinessErrorCode.PAYMENT_CREATION_FAILED

        db.expire_all()
        booking = db.query(Booking).one()
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancel_reason == CancelReason.PAYMENT_CREATION_FAILED.value
        assert exc_info.value.details["booking_id"] == booking.id

        assert db.get(type(credit), credit.id).remaining_amount == 3000
        assert db.query(CouponUsage).one().status == CouponUsageStatus.RESTORED.value
        assert db.get(type(coupon), coupon.id).current_uses == 0
        assert db.query(Payment).one().status == PaymentStatus.REJECTED.value
        assert AuditAction.PAYMENT_COMPENSATED.value in _actions(db, booking.id)

    def test_slot_and_coupon_are_free_again(
        self, db, gateway, make_credit, make_coupon, room, user_id, window, now
    ):
        make_coupon("PROMO10", value=1000)
        with pytest.raises(PaymentCreationFailedException):
            BookingService(db, gateway=FailingGateway()).create_booking_with_credit(
                _command(user_id, room, *window(10), coupon_code="PROMO10"), now=now
            )

        created = BookingService(db, gateway=gateway).create_booking_with_credit(
            _command(user_id, room, *window(10), coupon_code="PROMO10"), now=now
        )
        assert created.booking.status == BookingStatus.PENDING.value
        assert created.booking.discount_amount == 1000


class TestCancelPendingBooking:
    @pytest.fixture
    def pending(self, booking_service, make_credit, make_coupon, room, user_id, window, now):
        make_credit(user_id, 3000)
        make_coupon("PROMO10", value=1000)
        return booking_service.create_booking_with_credit(
            _command(user_id, room, *window(10), coupon_code="PROMO10"), now=now
        )

    def test_cancel_restores_credits_and_coupon(
        self, db, booking_service, gateway, pending, user_id, now
    ):
        result = booking_service.cancel_pending_booking(user_id, pending.booking.id, now=now)

        assert not result.already_cancelled
        assert result.credits_restored == 3000
        assert result.coupon_restored

        db.expire_all()
        booking = db.get(Booking, pending.booking.id)
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancel_reason == CancelReason.USER_CANCELLED_PENDING.value
        assert db.query(Payment).one().status == PaymentStatus.REJECTED.value
        assert gateway.cancelled == [pending.payment.external_id]

    def test_second_cancel_reports_already_cancelled(self, booking_service, pending, user_id, now):
        booking_service.cancel_pending_booking(user_id, pending.booking.id, now=now)
        again = booking_service.cancel_pending_booking(user_id, pending.booking.id, now=now)
        assert again.already_cancelled
        assert again.credits_restored == 0

    def test_only_owner_may_cancel(self, booking_service, pending):
        with pytest.raises(ForbiddenException):
            booking_service.cancel_pending_booking(
                OTHER_USER, pending.booking.id
            )

    def test_confirmed_booking_cannot_be_cancelled_by_owner(
        self, booking_service, make_booking, room, user_id, window
    ):
        booking = make_booking(user_id, room, *window(14), status=BookingStatus.CONFIRMED.value)
        with pytest.raises(InvalidStateTransitionException):
            booking_service.cancel_pending_booking(user_id, booking.id)

    def test_unknown_booking(self, booking_service, user_id):
        with pytest.raises(NotFoundException):
            booking_service.cancel_pending_booking(user_id, "01JMISSINGBOOKING000000000")


class TestAdminOperations:
    @pytest.fixture
    def confirmed(self, booking_service, make_credit, room, user_id, window, now):
        make_credit(user_id, 5000)
        return booking_service.create_booking_with_credit(
            _command(user_id, room, *window(10)), now=now
        ).booking

    def test_downgrade_is_blocked_and_audited(self, db, booking_service, confirmed):
        with pytest.raises(InvalidStateTransitionException) as exc_info:
            booking_service.admin_update_booking(ADMIN_ID, confirmed.id, status="PENDING")

        assert exc_info.value.details == {"current_status": "CONFIRMED", "target_status": "PENDING"}
        db.expire_all()
        assert db.get(Booking, confirmed.id).status == BookingStatus.CONFIRMED.value
        assert AuditAction.PROTECTED_DOWNGRADE_BLOCKED.value in _actions(db, confirmed.id)

    def test_cancel_through_update_is_refused(self, booking_service, confirmed):
        with pytest.raises(ValidationException):
            booking_service.admin_update_booking(
                ADMIN_ID, confirmed.id, status="cancelled"
            )

    def test_admin_refund_restores_credits(self, db, booking_service, confirmed, user_id):
        booking = booking_service.admin_update_booking(
            ADMIN_ID, confirmed.id, status="REFUNDED"
        )
        assert booking.status == BookingStatus.REFUNDED.value
        assert booking.refunded_amount == 5000
        (credit,) = booking_service.credits.repository.find_by(user_id=user_id)
        assert credit.remaining_amount == 5000

    def test_admin_confirm_keeps_the_credit_part_as_amount_paid(
        self, booking_service, make_credit, room, user_id, window, now
    ):
        make_credit(user_id, 3000)
        pending = booking_service.create_booking_with_credit(
            _command(user_id, room, *window(11)), now=now
        ).booking

        booking = booking_service.admin_update_booking(ADMIN_ID, pending.id, status="CONFIRMED")

        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.financial_status == FinancialStatus.PAID.value
        assert booking.amount_paid == 3000
        assert booking.amount_paid + booking.amount_to_pay == booking.net_amount

    def test_partial_refund_restores_only_the_refunded_share(
        self, db, booking_service, make_credit, make_booking, room, user_id, window
    ):
        credit = make_credit(user_id, 10000, remaining=3000)
        booking = make_booking(
            user_id,
            room,
            *window(16),
            status=BookingStatus.CONFIRMED.value,
            net=7000,
            credits_used=7000,
            allocations={credit.id: 7000},
        )

        with booking_service.transaction():
            result = booking_service.refund_booking(booking, 5000, full=False)

        assert result.credits_restored == 5000
        db.expire_all()
        assert db.get(Credit, credit.id).remaining_amount == 8000
        refreshed = db.get(Booking, booking.id)
        assert refreshed.status == BookingStatus.CONFIRMED.value
        assert refreshed.credit_allocations == {credit.id: 2000}

    def test_reschedule(self, db, booking_service, confirmed, window):
        start, end = window(14)
        booking = booking_service.admin_update_booking(
            ADMIN_ID, confirmed.id, start_time=start, end_time=end
        )
        assert ensure_utc(booking.start_time) == start
        assert AuditAction.BOOKING_UPDATED.value in _actions(db, confirmed.id)

    def test_reschedule_into_conflict(
        self, db, booking_service, confirmed, make_booking, room, window
    ):
        make_booking(OTHER_USER, room, *window(14))
        with pytest.raises(BookingConflictException):
            booking_service.admin_update_booking(
                ADMIN_ID, confirmed.id, start_time=window(14)[0], end_time=window(14)[1]
            )
        db.expire_all()
        assert ensure_utc(db.get(Booking, confirmed.id).start_time) == window(10)[0]

    def test_admin_cancel_confirmed_booking(self, db, booking_service, confirmed, user_id):
        result = booking_service.admin_cancel_booking(ADMIN_ID, confirmed.id)
        assert result.credits_restored == 5000
        assert not result.coupon_restored

        db.expire_all()
        booking = db.get(Booking, confirmed.id)
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancel_reason == CancelReason.ADMIN_CANCELLED.value

    def test_admin_cancel_is_idempotent(self, booking_service, confirmed):
        booking_service.admin_cancel_booking(ADMIN_ID, confirmed.id)
        again = booking_service.admin_cancel_booking(ADMIN_ID, confirmed.id)
        assert again.already_cancelled
