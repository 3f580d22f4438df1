"""
Idempotent charge creation.

Covers the reserve-first flow: a repeated call returns the stored checkout
without reaching the gateway, a failed charge leaves a REJECTED reservation
that a later attempt can re-claim.
"""

import pytest

from roombook.core.enums import PaymentEntityKind, PaymentStatus
from roombook.core.exceptions import ConflictException, PaymentMinAmountException
from roombook.integrations.asaas_client import AsaasError, FakeAsaasClient, PaymentCustomer
from roombook.models.payment import Payment
from roombook.services.payment_orchestrator import PaymentOrchestrator, build_idempotency_key


class FailingGateway(FakeAsaasClient):
    def create_charge(self, **kwargs):
        raise AsaasError("Gateway unavailable", status_code=503)


class BrokenCancelGateway(FakeAsaasClient):
    def cancel_charge(self, external_id):
        raise AsaasError("Cannot cancel", status_code=400)


CUSTOMER = PaymentCustomer(name="Ana Souza", email="ana@example.com")


@pytest.fixture
def pending_booking(make_booking, room, user_id, window):
    return make_booking(user_id, room, *window(10))


def _charge(orchestrator, booking, amount=5000, method="PIX"):
    return orchestrator.create_idempotent(
        entity_id=booking.id,
        user_id=booking.user_id,
        amount_cents=amount,
        method=method,
        customer=CUSTOMER,
        description=f"Room booking {booking.id}",
    )


class TestCreateIdempotent:
    def test_creates_one_charge(self, db, gateway, pending_booking):
        orchestrator = PaymentOrchestrator(db, gateway=gateway)
        result = _charge(orchestrator, pending_booking)

        assert not result.reused
        assert result.checkout_url.startswith("http://testserver/mock-payment")
        assert result.pix_payload.startswith("00020126MOCKPIX")
        assert len(gateway.charges) == 1
        charge = gateway.charges[result.external_id]
        assert charge["idempotency_key"] == f"booking:{pending_booking.id}:PIX"
        assert charge["amount_cents"] == 5000

        payment = db.get(Payment, result.payment_id)
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.external_url == result.checkout_url

    def test_repeated_call_reuses_the_checkout(self, db, gateway, pending_booking):
        orchestrator = PaymentOrchestrator(db, gateway=gateway)
        first = _charge(orchestrator, pending_booking)
        second = _charge(orchestrator, pending_booking)

        assert second.reused
        assert second.payment_id == first.payment_id
        assert second.checkout_url == first.checkout_url
        assert len(gateway.charges) == 1
        assert db.query(Payment).count() == 1

    def test_in_flight_reservation_is_a_conflict(self, db, gateway, pending_booking):
        db.add(
            Payment(
                booking_id=pending_booking.id,
                user_id=pending_booking.user_id,
                amount=5000,
                method="PIX",
                status=PaymentStatus.PENDING.value,
                idempotency_key=build_idempotency_key(
                    PaymentEntityKind.BOOKING, pending_booking.id, "PIX"
                ),
            )
        )
        db.commit()

        with pytest.raises(ConflictException):
            _charge(PaymentOrchestrator(db, gateway=gateway), pending_booking)
        assert gateway.charges == {}

    def test_amount_below_minimum(self, db, gateway, pending_booking):
        with pytest.raises(PaymentMinAmountException) as exc_info:
            _charge(PaymentOrchestrator(db, gateway=gateway), pending_booking, amount=50)
        assert exc_info.value.details["min_amount_cents"] == 100
        assert db.query(Payment).count() == 0

    def test_card_minimum_is_higher(self, db, gateway, pending_booking):
        with pytest.raises(PaymentMinAmountException):
            _charge(PaymentOrchestrator(db, gateway=gateway), pending_booking, 300, "CARD")

    def test_gateway_failure_leaves_rejected_reservation(self, db, pending_booking):
        with pytest.raises(AsaasError):
            _charge(PaymentOrchestrator(db, gateway=FailingGateway()), pending_booking)

        payment = db.query(Payment).one()
        db.refresh(payment)
        assert payment.status == PaymentStatus.REJECTED.value
        assert payment.external_id is None

    def test_rejected_reservation_is_reclaimed(self, db, gateway, pending_booking):
        with pytest.raises(AsaasError):
            _charge(PaymentOrchestrator(db, gateway=FailingGateway()), pending_booking)

        result = _charge(PaymentOrchestrator(db, gateway=gateway), pending_booking)

        assert not result.reused
        assert db.query(Payment).count() == 1
        payment = db.get(Payment, result.payment_id)
        db.refresh(payment)
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.external_id == result.external_id


class TestRejectAndCancel:
    def test_reject_active_then_cancel_external(self, db, gateway, pending_booking):
        orchestrator = PaymentOrchestrator(db, gateway=gateway)
        result = _charge(orchestrator, pending_booking)

        with orchestrator.transaction():
            payment = orchestrator.reject_active(pending_booking.id)

        assert payment.status == PaymentStatus.REJECTED.value
        assert orchestrator.cancel_external(payment)
        assert gateway.cancelled == [result.external_id]

    def test_approved_payment_is_not_rejected(self, db, gateway, pending_booking):
        orchestrator = PaymentOrchestrator(db, gateway=gateway)
        result = _charge(orchestrator, pending_booking)
        payment = db.get(Payment, result.payment_id)
        payment.status = PaymentStatus.APPROVED.value
        db.commit()

        assert orchestrator.reject_active(pending_booking.id) is None
        assert orchestrator.has_confirmed_payment(pending_booking.id)

    def test_cancel_external_failure_is_swallowed(self, db, pending_booking):
        orchestrator = PaymentOrchestrator(db, gateway=BrokenCancelGateway())
        _charge(orchestrator, pending_booking)
        payment = db.query(Payment).one()
        assert orchestrator.cancel_external(payment) is False

    def test_cancel_external_without_reference(self, db, gateway):
        assert PaymentOrchestrator(db, gateway=gateway).cancel_external(None) is False
