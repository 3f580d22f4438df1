"""External service integrations for the booking engine."""

from .asaas_client import (
    AsaasClient,
    AsaasError,
    FakeAsaasClient,
    PaymentCustomer,
    PaymentGateway,
    PaymentGatewayError,
    get_payment_gateway,
)

__all__ = [
    "AsaasClient",
    "AsaasError",
    "FakeAsaasClient",
    "PaymentCustomer",
    "PaymentGateway",
    "PaymentGatewayError",
    "get_payment_gateway",
]
