"""
Machine-facing endpoints: scheduled cleanup, the Asaas webhook and the
error envelope for unexpected failures.
"""

from datetime import timedelta

from fastapi.testclient import TestClient
import pytest

from roombook.api.dependencies.services import get_cleanup_service
from roombook.core.enums import BookingStatus
from roombook.core.exceptions import OverlapViolation, UniqueViolation
from roombook.core.timezone_utils import utc_now
from roombook.main import app
from roombook.models.booking import Booking
from roombook.models.payment import PAYMENT_IDEMPOTENCY_CONSTRAINT, Payment

CRON_URL = "/api/v1/cron/cleanup-pending-bookings"
WEBHOOK_URL = "/api/v1/webhooks/asaas"
WEBHOOK_HEADERS = {"asaas-access-token": "test-webhook-token"}


class TestCron:
    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "test-cron-secret"}],
    )
    def test_requires_the_cron_secret(self, client, headers):
        response = client.post(CRON_URL, headers=headers)
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_cancels_expired_bookings(
        self, client, db, make_booking, room, user_id, upcoming_window
    ):
        booking = make_booking(
            user_id, room, *upcoming_window(10), expires_at=utc_now() - timedelta(minutes=1)
        )

        response = client.post(CRON_URL, headers={"Authorization": "Bearer test-cron-secret"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "processed": 1,
            "cancelled": 1,
            "couponsRestored": 0,
            "errors": 0,
        }
        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.CANCELLED.value


class TestAsaasWebhook:
    def test_rejects_missing_or_wrong_token(self, client):
        payload = {"id": "evt_1", "event": "PAYMENT_CONFIRMED", "payment": {"id": "pay_1"}}
        assert client.post(WEBHOOK_URL, json=payload).status_code == 401
        assert (
            client.post(
                WEBHOOK_URL, json=payload, headers={"asaas-access-token": "nope"}
            ).status_code
            == 401
        )

    def test_unhandled_event_is_acknowledged(self, client):
        response = client.post(
            WEBHOOK_URL,
            json={"id": "evt_1", "event": "PAYMENT_CREATED", "payment": {"id": "pay_1"}},
            headers=WEBHOOK_HEADERS,
        )
        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "status": "IGNORED_EVENT_TYPE",
            "eventId": "evt_1",
        }

    def test_confirmation_end_to_end(
        self, client, db, auth_headers, make_credit, room, user_id, upcoming_window
    ):
        make_credit(user_id, 1000)
        start, end = upcoming_window(15)
        created = client.post(
            "/api/v1/bookings/with-credit",
            json={
                "room_id": room.id,
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
            },
            headers=auth_headers(user_id),
        ).json()
        payment = db.query(Payment).filter(Payment.booking_id == created["bookingId"]).one()
        payload = {
            "id": "evt_paid",
            "event": "PAYMENT_RECEIVED",
            "payment": {"id": payment.external_id, "externalReference": created["bookingId"]},
        }

        first = client.post(WEBHOOK_URL, json=payload, headers=WEBHOOK_HEADERS)
        second = client.post(WEBHOOK_URL, json=payload, headers=WEBHOOK_HEADERS)

        assert first.json()["status"] == "PROCESSED"
        assert second.status_code == 200
        assert second.json()["duplicate"] is True
        db.expire_all()
        booking = db.get(Booking, created["bookingId"])
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.amount_paid == 1000
        assert booking.amount_paid + booking.amount_to_pay == booking.net_amount


class TestErrorEnvelope:
    def test_unexpected_error_hides_the_message(self, client):
        class Exploding:
            def run_expiry_cleanup(self, **kwargs):
                raise RuntimeError("connection string leaked here")

        app.dependency_overrides[get_cleanup_service] = lambda: Exploding()
        quiet_client = TestClient(app, raise_server_exceptions=False)

        response = quiet_client.post(
            CRON_URL, headers={"Authorization": "Bearer test-cron-secret"}
        )

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "INTERNAL_ERROR"
        assert "leaked" not in response.text
        quiet_client.close()

    @pytest.mark.parametrize(
        "violation,status_code,code",
        [
            (
                UniqueViolation("duplicate key value", PAYMENT_IDEMPOTENCY_CONSTRAINT),
                409,
                "DUPLICATE_ENTRY",
            ),
            (
                OverlapViolation("conflicting key value", "bookings_no_overlap"),
                409,
                "BOOKING_CONFLICT",
            ),
        ],
    )
    def test_store_violations_become_business_errors(
        self, client, violation, status_code, code
    ):
        class Violating:
            def run_expiry_cleanup(self, **kwargs):
                raise violation

        app.dependency_overrides[get_cleanup_service] = lambda: Violating()

        response = client.post(CRON_URL, headers={"Authorization": "Bearer test-cron-secret"})

        assert response.status_code == status_code
        body = response.json()
        assert body["success"] is False
        assert body["code"] == code
        assert "key value" not in response.text

    def test_duplicate_entry_names_the_constraint(self, client):
        class Violating:
            def run_expiry_cleanup(self, **kwargs):
                raise UniqueViolation("duplicate", PAYMENT_IDEMPOTENCY_CONSTRAINT)

        app.dependency_overrides[get_cleanup_service] = lambda: Violating()

        response = client.post(CRON_URL, headers={"Authorization": "Bearer test-cron-secret"})

        assert response.json()["details"] == {"constraint": PAYMENT_IDEMPOTENCY_CONSTRAINT}

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_metrics_are_exposed(self, client):
        client.get("/health")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "roombook_http_request_duration_seconds" in response.text
