# backend/roombook/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...integrations.asaas_client import PaymentGateway, get_payment_gateway
from ...services.booking_cleanup_service import BookingCleanupService
from ...services.booking_service import BookingService
from ...services.credit_purchase_service import CreditPurchaseService
from ...services.payment_webhook_service import PaymentWebhookService
from .database import get_db


def get_gateway() -> PaymentGateway:
    """Payment gateway for this request (fake in mock mode)."""
    return get_payment_gateway()


def get_booking_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> BookingService:
    return BookingService(db, gateway=gateway)


def get_credit_purchase_service(
    booking_service: BookingService = Depends(get_booking_service),
) -> CreditPurchaseService:
    return CreditPurchaseService(
        booking_service.db,
        credit_service=booking_service.credits,
        coupon_service=booking_service.coupons,
        payment_orchestrator=booking_service.payments,
        audit_service=booking_service.audit,
        contingency_service=booking_service.contingency,
    )


def get_cleanup_service(
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingCleanupService:
    return BookingCleanupService(booking_service.db, booking_service=booking_service)


def get_webhook_service(
    booking_service: BookingService = Depends(get_booking_service),
    purchase_service: CreditPurchaseService = Depends(get_credit_purchase_service),
) -> PaymentWebhookService:
    return PaymentWebhookService(
        booking_service.db,
        booking_service=booking_service,
        purchase_service=purchase_service,
    )
