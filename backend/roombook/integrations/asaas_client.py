"""Minimal Asaas API client for PIX and card charges."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
import json
import logging
from typing import Any, Dict, Optional, Protocol, cast
from uuid import uuid4

import httpx
from pydantic import SecretStr

from ..core.config import settings
from ..core.enums import PaymentMethod

logger = logging.getLogger(__name__)

BILLING_TYPES = {
    PaymentMethod.PIX.value: "PIX",
    PaymentMethod.CARD.value: "CREDIT_CARD",
}


def cents_to_reais(amount_cents: int) -> float:
    """Wire format: BRL with two decimals."""
    return float((Decimal(int(amount_cents)) / 100).quantize(Decimal("0.01")))


def reais_to_cents(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int((Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PaymentCustomer:
    name: str
    email: str
    cpf_cnpj: Optional[str] = None
    phone: Optional[str] = None


class PaymentGatewayError(RuntimeError):
    """Raised when the payment gateway cannot complete a call."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_body = error_body


class AsaasError(PaymentGatewayError):
    """Raised when the Asaas API responds with an error."""


class PaymentGateway(Protocol):
    def create_charge(
        self,
        *,
        customer: PaymentCustomer,
        amount_cents: int,
        method: str,
        description: str,
        external_reference: str,
        idempotency_key: str,
    ) -> Dict[str, Any]:
        """Return ``{external_id, checkout_url, status}``."""
        ...

    def cancel_charge(self, external_id: str) -> bool:
        ...

    def get_pix_code(self, external_id: str) -> Optional[Dict[str, Any]]:
        ...

    def refund_charge(self, external_id: str, amount_cents: Optional[int] = None) -> bool:
        ...


class AsaasClient:
    """Thin client for the Asaas v3 REST API."""

    def __init__(
        self,
        *,
        api_key: str | SecretStr,
        base_url: str = "https://sandbox.asaas.com/api/v3",
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        if not secret_value:
            raise ValueError("Asaas API key must be provided")

        self._api_key = secret_value
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def find_or_create_customer(self, customer: PaymentCustomer) -> str:
        """Return the Asaas customer id for ``customer.email``, creating it if needed."""
        found = self.request("GET", "/customers", params={"email": customer.email})
        existing = found.get("data") or []
        if existing:
            return str(existing[0]["id"])

        body: Dict[str, Any] = {"name": customer.name, "email": customer.email}
        if customer.cpf_cnpj:
            body["cpfCnpj"] = customer.cpf_cnpj
        if customer.phone:
            body["mobilePhone"] = customer.phone
        created = self.request("POST", "/customers", json_body=body)
        return str(created["id"])

    def create_charge(
        self,
        *,
        customer: PaymentCustomer,
        amount_cents: int,
        method: str,
        description: str,
        external_reference: str,
        idempotency_key: str,
    ) -> Dict[str, Any]:
        billing_type = BILLING_TYPES.get(method.upper())
        if billing_type is None:
            raise ValueError(f"Unsupported payment method: {method}")

        customer_id = self.find_or_create_customer(customer)
        payment = self.request(
            "POST",
            "/payments",
            json_body={
                "customer": customer_id,
                "billingType": billing_type,
                "value": cents_to_reais(amount_cents),
                "dueDate": (date.today() + timedelta(days=1)).isoformat(),
                "description": description,
                "externalReference": external_reference,
            },
            headers={"Idempotency-Key": idempotency_key},
        )
        return {
            "external_id": str(payment["id"]),
            "checkout_url": payment.get("invoiceUrl"),
            "status": payment.get("status", "PENDING"),
        }

    def cancel_charge(self, external_id: str) -> bool:
        if not external_id:
            raise ValueError("external_id must be provided")
        response = self.request("DELETE", f"/payments/{external_id}")
        return bool(response.get("deleted", True))

    def get_pix_code(self, external_id: str) -> Optional[Dict[str, Any]]:
        response = self.request("GET", f"/payments/{external_id}/pixQrCode")
        if not response.get("payload"):
            return None
        return {
            "payload": response["payload"],
            "encoded_image": response.get("encodedImage"),
            "expiration": response.get("expirationDate"),
        }

    def refund_charge(self, external_id: str, amount_cents: Optional[int] = None) -> bool:
        body: Dict[str, Any] = {}
        if amount_cents is not None:
            body["value"] = cents_to_reais(amount_cents)
        self.request("POST", f"/payments/{external_id}/refund", json_body=body)
        return True

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw Asaas API request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json", "access_token": self._api_key},
        ) as client:
            try:
                response = client.request(
                    method, url, json=json_body, params=params, headers=headers
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                error_payload: Any | None = None
                message = f"Asaas API responded with status {status}"
                try:
                    error_payload = exc.response.json()
                    errors = (
                        error_payload.get("errors") if isinstance(error_payload, dict) else None
                    )
                    if errors and isinstance(errors, list) and errors[0].get("description"):
                        message = str(errors[0]["description"])
                except json.JSONDecodeError:
                    error_payload = exc.response.text

                logger.error(
                    "Asaas API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise AsaasError(message, status_code=status, error_body=error_payload) from exc
            except httpx.RequestError as exc:
                logger.error("Asaas request failure for %s %s: %s", method, path, str(exc))
                raise AsaasError("Failed to reach Asaas API") from exc

        try:
            return cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from Asaas for %s %s: %s", method, path, response.text)
            raise AsaasError("Received malformed JSON from Asaas") from exc


class FakeAsaasClient:
    """In-memory stand-in for Asaas used in mock mode and tests."""

    def __init__(self, public_url: Optional[str] = None) -> None:
        self._public_url = (public_url or settings.app_public_url).rstrip("/")
        self._logger = logging.getLogger(self.__class__.__name__)
        self.charges: Dict[str, Dict[str, Any]] = {}
        self.cancelled: list[str] = []
        self.refunds: list[tuple[str, Optional[int]]] = []

    def create_charge(
        self,
        *,
        customer: PaymentCustomer,
        amount_cents: int,
        method: str,
        description: str,
        external_reference: str,
        idempotency_key: str,
    ) -> Dict[str, Any]:
        external_id = f"pay_mock_{uuid4().hex[:16]}"
        checkout_url = (
            f"{self._public_url}/mock-payment?id={external_id}"
            f"&booking={external_reference}&amount={amount_cents}"
        )
        self.charges[external_id] = {
            "amount_cents": amount_cents,
            "method": method,
            "external_reference": external_reference,
            "idempotency_key": idempotency_key,
            "customer_email": customer.email,
        }
        self._logger.debug("Fake charge created", extra={"external_id": external_id})
        return {"external_id": external_id, "checkout_url": checkout_url, "status": "PENDING"}

    def cancel_charge(self, external_id: str) -> bool:
        self.cancelled.append(external_id)
        return True

    def get_pix_code(self, external_id: str) -> Optional[Dict[str, Any]]:
        if external_id not in self.charges:
            return None
        return {
            "payload": f"00020126MOCKPIX{external_id}",
            "encoded_image": None,
            "expiration": None,
        }

    def refund_charge(self, external_id: str, amount_cents: Optional[int] = None) -> bool:
        self.refunds.append((external_id, amount_cents))
        return True


def get_payment_gateway() -> PaymentGateway:
    """Real client when an API key is configured, fake gateway otherwise."""
    api_key = settings.asaas_api_key
    if settings.payment_gateway_mock_mode or api_key is None:
        return FakeAsaasClient()
    return AsaasClient(
        api_key=api_key,
        base_url=settings.asaas_base_url,
        timeout=settings.asaas_timeout_seconds,
    )
