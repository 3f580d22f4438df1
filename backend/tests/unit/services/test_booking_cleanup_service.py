"""
Expiry cleanup of unpaid bookings.
"""

from datetime import timedelta

import pytest

from roombook.core.enums import (
    AuditAction,
    BookingStatus,
    CancelReason,
    CouponUsageStatus,
    PaymentStatus,
)
from roombook.models.audit_event import AuditEvent
from roombook.models.booking import Booking
from roombook.models.coupon import CouponUsage
from roombook.models.payment import Payment
from roombook.services.booking_cleanup_service import BookingCleanupService
from roombook.services.booking_service import CreateBookingCommand


@pytest.fixture
def cleanup_service(db, booking_service):
    return BookingCleanupService(db, booking_service=booking_service)


@pytest.fixture
def pending(booking_service, make_credit, make_coupon, room, user_id, window, now):
    """PENDING booking: 5000 gross, 1000 off, 3000 from credit, 1000 by PIX."""
    make_credit(user_id, 3000)
    make_coupon("PROMO10")
    start, end = window(10)
    created = booking_service.create_booking_with_credit(
        CreateBookingCommand(
            user_id=user_id,
            room_id=room.id,
            start_time=start,
            end_time=end,
            coupon_code="PROMO10",
        ),
        now=now,
    )
    assert created.booking.status == BookingStatus.PENDING.value
    assert created.amount_to_pay == 1000
    return created.booking


class TestRunExpiryCleanup:
    def test_expired_booking_is_cancelled_and_restored(
        self, db, cleanup_service, gateway, pending, user_id, now
    ):
        report = cleanup_service.run_expiry_cleanup(now=now + timedelta(hours=25))

        assert report.processed == 1
        assert report.cancelled == 1
        assert report.coupons_restored == 1
        assert report.credits_restored == 3000
        assert report.errors == 0
        assert report.booking_ids == [pending.id]

        db.expire_all()
        booking = db.get(Booking, pending.id)
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancel_reason == CancelReason.EXPIRED_NO_PAYMENT.value

        (credit,) = cleanup_service.bookings.credits.repository.find_by(user_id=user_id)
        assert credit.remaining_amount == 3000

        usage = db.query(CouponUsage).filter(CouponUsage.user_id == user_id).one()
        assert usage.status == CouponUsageStatus.RESTORED.value

        payment = db.query(Payment).filter(Payment.booking_id == pending.id).one()
        assert payment.status == PaymentStatus.REJECTED.value
        assert gateway.cancelled == [payment.external_id]

        actions = [
            e.action for e in db.query(AuditEvent).filter(AuditEvent.target_id == pending.id)
        ]
        assert AuditAction.BOOKING_EXPIRED.value in actions

    def test_second_run_finds_nothing(self, cleanup_service, pending, now):
        later = now + timedelta(hours=25)
        cleanup_service.run_expiry_cleanup(now=later)

        report = cleanup_service.run_expiry_cleanup(now=later)
        assert report.processed == 0
        assert report.cancelled == 0

    def test_booking_inside_its_payment_window_is_kept(self, db, cleanup_service, pending, now):
        report = cleanup_service.run_expiry_cleanup(now=now + timedelta(hours=1))

        assert report.processed == 0
        db.expire_all()
        assert db.get(Booking, pending.id).status == BookingStatus.PENDING.value

    def test_rows_without_expiry_use_the_age_fallback(
        self, db, cleanup_service, make_booking, room, user_id, window, now
    ):
        stale = make_booking(
            user_id, room, *window(10), expires_at=None, created_at=now - timedelta(days=2)
        )
        fresh = make_booking(
            user_id, room, *window(14), expires_at=None, created_at=now - timedelta(hours=1)
        )

        report = cleanup_service.run_expiry_cleanup(now=now)

        assert report.booking_ids == [stale.id]
        db.expire_all()
        assert db.get(Booking, fresh.id).status == BookingStatus.PENDING.value

    def test_confirmed_bookings_are_never_touched(
        self, db, cleanup_service, make_booking, room, user_id, window, now
    ):
        booking = make_booking(
            user_id,
            room,
            *window(10),
            status=BookingStatus.CONFIRMED.value,
            expires_at=now - timedelta(hours=1),
        )
        assert cleanup_service.run_expiry_cleanup(now=now).processed == 0
        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.CONFIRMED.value

    def test_limit_bounds_each_run(
        self, cleanup_service, make_booking, room, user_id, window, now
    ):
        for hour in (9, 11, 13):
            make_booking(user_id, room, *window(hour), expires_at=now - timedelta(minutes=5))

        first = cleanup_service.run_expiry_cleanup(now=now, limit=2)
        second = cleanup_service.run_expiry_cleanup(now=now, limit=2)

        assert first.cancelled == 2
        assert second.cancelled == 1
        assert set(first.booking_ids).isdisjoint(second.booking_ids)

    def test_report_payload_is_camel_cased(self, cleanup_service, now):
        report = cleanup_service.run_expiry_cleanup(now=now)
        assert report.as_dict() == {
            "processed": 0,
            "cancelled": 0,
            "couponsRestored": 0,
            "errors": 0,
        }
