"""
Credit package purchase under /api/v1/credits.
"""

from roombook.core.enums import PurchaseStatus
from roombook.models.credit import Credit
from roombook.models.credit_purchase import CreditPurchase
from roombook.models.payment import Payment

PURCHASE_URL = "/api/v1/credits/purchase"
WEBHOOK_URL = "/api/v1/webhooks/asaas"
WEBHOOK_HEADERS = {"asaas-access-token": "test-webhook-token"}


class TestPurchaseCredits:
    def test_requires_authentication(self, client, room):
        response = client.post(PURCHASE_URL, json={"room_id": room.id})

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_creates_pending_purchase_with_checkout(
        self, client, db, auth_headers, room, user_id
    ):
        response = client.post(
            PURCHASE_URL,
            json={"room_id": room.id, "usage_type": "hourly", "quantity": 4},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["status"] == PurchaseStatus.PENDING.value
        assert body["creditAmount"] == 20000
        assert body["amountToPay"] == 20000
        assert body["paymentUrl"]
        purchase = db.get(CreditPurchase, body["purchaseId"])
        assert purchase.user_id == user_id
        assert db.query(Credit).count() == 0

    def test_quantity_out_of_range(self, client, auth_headers, room, user_id):
        response = client.post(
            PURCHASE_URL,
            json={"room_id": room.id, "quantity": 0},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_room(self, client, auth_headers, user_id):
        response = client.post(
            PURCHASE_URL,
            json={"room_id": "01JZZZZZZZZZZZZZZZZZZZZZZZ"},
            headers=auth_headers(user_id),
        )
        assert response.status_code == 404

    def test_paid_purchase_shows_up_as_credit(self, client, db, auth_headers, room, user_id):
        body = client.post(
            PURCHASE_URL,
            json={"room_id": room.id, "quantity": 2},
            headers=auth_headers(user_id),
        ).json()
        payment = db.query(Payment).filter(Payment.purchase_id == body["purchaseId"]).one()

        response = client.post(
            WEBHOOK_URL,
            json={
                "id": "evt_credit",
                "event": "PAYMENT_CONFIRMED",
                "payment": {
                    "id": payment.external_id,
                    "externalReference": f"purchase:{body['purchaseId']}",
                },
            },
            headers=WEBHOOK_HEADERS,
        )

        assert response.json()["status"] == "PROCESSED"
        db.expire_all()
        credit = db.query(Credit).one()
        assert credit.user_id == user_id
        assert credit.remaining_amount == 10000
