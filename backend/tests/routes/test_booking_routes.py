"""
Customer booking endpoints under /api/v1/bookings.
"""

from roombook.core.enums import BookingStatus, ContingencyFlag, CouponUsageStatus
from roombook.models.booking import Booking
from roombook.models.coupon import CouponUsage
from roombook.models.credit import Credit
from roombook.services.contingency_service import ContingencyService

CREATE_URL = "/api/v1/bookings/with-credit"


def _body(room, start, end, **extra):
    body = {"room_id": room.id, "start_time": start.isoformat(), "end_time": end.isoformat()}
    body.update(extra)
    return body


class TestCreateWithCredit:
    def test_requires_authentication(self, client, room, upcoming_window):
        response = client.post(CREATE_URL, json=_body(room, *upcoming_window(10)))

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "UNAUTHORIZED"
        assert body["requestId"] == response.headers["X-Request-ID"]

    def test_rejects_garbage_token(self, client, room, upcoming_window):
        response = client.post(
            CREATE_URL,
            json=_body(room, *upcoming_window(10)),
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    def test_requires_verified_email(
        self, client, auth_headers, room, user_id, upcoming_window
    ):
        response = client.post(
            CREATE_URL,
            json=_body(room, *upcoming_window(10)),
            headers=auth_headers(user_id, email_verified=False),
        )
        assert response.status_code == 403
        assert response.json()["code"] == "EMAIL_NOT_VERIFIED"

    def test_fully_credited_booking(
        self, client, auth_headers, make_credit, room, user_id, upcoming_window
    ):
        make_credit(user_id, 10000)
        response = client.post(
            CREATE_URL,
            json=_body(room, *upcoming_window(10)),
            headers=auth_headers(user_id),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["status"] == BookingStatus.CONFIRMED.value
        assert body["creditsUsed"] == 5000
        assert body["amountToPay"] == 0
        assert body["paymentUrl"] is None
        assert "booking_id" not in body

    def test_cash_remainder_returns_checkout(
        self, client, db, auth_headers, make_credit, room, user_id, upcoming_window
    ):
        make_credit(user_id, 2000)
        response = client.post(
            CREATE_URL,
            json=_body(room, *upcoming_window(10), payment_method="pix"),
            headers=auth_headers(user_id, email="ana@example.com"),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == BookingStatus.PENDING.value
        assert body["amountToPay"] == 3000
        assert body["paymentUrl"].startswith("http://testserver/mock-payment")
        assert body["pixPayload"].startswith("00020126MOCKPIX")

        booking = db.get(Booking, body["bookingId"])
        assert booking.expires_at is not None

    def test_end_before_start_is_a_validation_error(
        self, client, auth_headers, room, user_id, upcoming_window
    ):
        start, end = upcoming_window(10)
        response = client.post(
            CREATE_URL, json=_body(room, end, start), headers=auth_headers(user_id)
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_fields_are_rejected(
        self, client, auth_headers, room, user_id, upcoming_window
    ):
        response = client.post(
            CREATE_URL,
            json=_body(room, *upcoming_window(10), discount=5000),
            headers=auth_headers(user_id),
        )
        assert response.status_code == 400

    def test_overlap_is_a_conflict(
        self, client, auth_headers, make_credit, room, user_id, upcoming_window
    ):
        other = "01JOTHERUSER00000000000000"
        make_credit(user_id, 5000)
        make_credit(other, 5000)
        start, end = upcoming_window(10)

        first = client.post(CREATE_URL, json=_body(room, start, end), headers=auth_headers(user_id))
        second = client.post(CREATE_URL, json=_body(room, start, end), headers=auth_headers(other))

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["code"] == "BOOKING_CONFLICT"

    def test_maintenance_mode_locks_booking(
        self, client, db, auth_headers, make_credit, room, user_id, upcoming_window
    ):
        make_credit(user_id, 5000)
        ContingencyService(db).set_flag(ContingencyFlag.MAINTENANCE_MODE, True)

        response = client.post(
            CREATE_URL, json=_body(room, *upcoming_window(10)), headers=auth_headers(user_id)
        )

        assert response.status_code == 423
        assert response.json()["code"] == "SERVICE_UNAVAILABLE"
        assert db.query(Booking).count() == 0


class TestCancelPending:
    def test_owner_cancels_and_gets_everything_back(
        self, client, db, auth_headers, make_credit, make_coupon, room, user_id, upcoming_window
    ):
        credit = make_credit(user_id, 2000)
        make_coupon("PROMO10")
        created = client.post(
            CREATE_URL,
            json=_body(room, *upcoming_window(10), coupon_code="promo10"),
            headers=auth_headers(user_id),
        ).json()

        response = client.post(
            f"/api/v1/bookings/{created['bookingId']}/cancel-pending",
            headers=auth_headers(user_id),
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "bookingId": created["bookingId"],
            "alreadyCancelled": False,
            "creditsRestored": 2000,
            "couponRestored": True,
        }
        db.expire_all()
        assert db.get(Credit, credit.id).remaining_amount == 2000
        usage = db.query(CouponUsage).filter(CouponUsage.user_id == user_id).one()
        assert usage.status == CouponUsageStatus.RESTORED.value

    def test_other_users_booking_is_forbidden(
        self, client, auth_headers, make_booking, room, user_id, upcoming_window
    ):
        booking = make_booking(user_id, room, *upcoming_window(10))
        response = client.post(
            f"/api/v1/bookings/{booking.id}/cancel-pending",
            headers=auth_headers("01JOTHERUSER00000000000000"),
        )
        assert response.status_code == 403

    def test_malformed_id(self, client, auth_headers, user_id):
        response = client.post(
            "/api/v1/bookings/not-a-ulid/cancel-pending", headers=auth_headers(user_id)
        )
        assert response.status_code == 400
