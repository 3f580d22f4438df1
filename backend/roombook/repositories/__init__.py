# backend/roombook/repositories/__init__.py
"""
Repository layer for the booking engine.

Repositories never commit; services own the transaction. Store constraint
violations come out of this package as ``OverlapViolation`` or
``UniqueViolation(constraint)``, never as raw driver errors.

Usage:
    from roombook.repositories import RepositoryFactory

    booking_repository = RepositoryFactory.create_booking_repository(db)
    conflicts = booking_repository.find_overlapping(room_id, start, end, buffer_minutes=30)
"""

from .audit_event_repository import AuditEventRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .coupon_repository import CouponRepository
from .coupon_usage_repository import CouponUsageRepository
from .credit_purchase_repository import CreditPurchaseRepository
from .credit_repository import CreditRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .room_repository import RoomRepository
from .setting_repository import SettingRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "AuditEventRepository",
    "BaseRepository",
    "BookingRepository",
    "CouponRepository",
    "CouponUsageRepository",
    "CreditPurchaseRepository",
    "CreditRepository",
    "PaymentRepository",
    "RepositoryFactory",
    "RoomRepository",
    "SettingRepository",
    "WebhookEventRepository",
]
