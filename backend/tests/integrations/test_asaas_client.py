from __future__ import annotations

import json

import httpx
from httpx import MockTransport, Response
import pytest

from roombook.integrations.asaas_client import (
    AsaasClient,
    AsaasError,
    PaymentCustomer,
    cents_to_reais,
    reais_to_cents,
)

BASE_URL = "https://sandbox.asaas.com/api/v3"
CUSTOMER = PaymentCustomer(name="Ana Souza", email="ana@example.com", cpf_cnpj="12345678909")


def _client(handler) -> AsaasClient:
    return AsaasClient(api_key="aact_test", base_url=BASE_URL, transport=MockTransport(handler))


def _charge(client: AsaasClient, method: str = "PIX"):
    return client.create_charge(
        customer=CUSTOMER,
        amount_cents=12345,
        method=method,
        description="Room booking",
        external_reference="01JBOOKING0000000000000001",
        idempotency_key="booking:01JBOOKING0000000000000001:PIX",
    )


def test_create_charge_reuses_existing_customer():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> Response:
        seen.append(request)
        if request.url.path.endswith("/customers"):
            return Response(200, json={"data": [{"id": "cus_1"}]})
        return Response(
            200, json={"id": "pay_1", "invoiceUrl": "https://asaas/i/pay_1", "status": "PENDING"}
        )

    result = _charge(_client(handler))

    assert result == {
        "external_id": "pay_1",
        "checkout_url": "https://asaas/i/pay_1",
        "status": "PENDING",
    }
    lookup, create = seen
    assert lookup.method == "GET"
    assert lookup.url.params["email"] == "ana@example.com"
    assert create.headers["Idempotency-Key"] == "booking:01JBOOKING0000000000000001:PIX"
    assert create.headers["access_token"] == "aact_test"

    body = json.loads(create.content)
    assert body["customer"] == "cus_1"
    assert body["billingType"] == "PIX"
    assert body["value"] == 123.45
    assert body["externalReference"] == "01JBOOKING0000000000000001"


def test_create_charge_creates_missing_customer():
    paths: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> Response:
        paths.append((request.method, request.url.path))
        if request.method == "GET":
            return Response(200, json={"data": []})
        if request.url.path.endswith("/customers"):
            assert json.loads(request.content)["cpfCnpj"] == "12345678909"
            return Response(200, json={"id": "cus_new"})
        return Response(200, json={"id": "pay_2", "invoiceUrl": None})

    result = _charge(_client(handler), method="CARD")

    assert result["external_id"] == "pay_2"
    assert [method for method, _ in paths] == ["GET", "POST", "POST"]


def test_error_description_becomes_message():
    def handler(request: httpx.Request) -> Response:
        return Response(
            400, json={"errors": [{"code": "invalid_value", "description": "Valor inválido"}]}
        )

    with pytest.raises(AsaasError) as exc_info:
        _client(handler).cancel_charge("pay_1")

    assert str(exc_info.value) == "Valor inválido"
    assert exc_info.value.status_code == 400
    assert exc_info.value.error_body["errors"][0]["code"] == "invalid_value"


def test_transport_failure_is_wrapped():
    def handler(request: httpx.Request) -> Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(AsaasError, match="Failed to reach Asaas API"):
        _client(handler).get_pix_code("pay_1")


def test_refund_sends_partial_value():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return Response(200, json={"id": "pay_1", "status": "REFUNDED"})

    assert _client(handler).refund_charge("pay_1", 2500)
    assert captured == {"path": "/api/v3/payments/pay_1/refund", "body": {"value": 25.0}}


def test_unsupported_method_and_missing_key():
    with pytest.raises(ValueError):
        _charge(_client(lambda request: Response(200, json={})), method="BOLETO")
    with pytest.raises(ValueError):
        AsaasClient(api_key="")


def test_money_conversions():
    assert cents_to_reais(12345) == 123.45
    assert cents_to_reais(100) == 1.0
    assert reais_to_cents("25.00") == 2500
    assert reais_to_cents(19.99) == 1999
    assert reais_to_cents(None) == 0
