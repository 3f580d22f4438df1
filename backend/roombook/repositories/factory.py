# backend/roombook/repositories/factory.py
"""
Repository Factory

Provides centralized creation of repository instances so services get
consistently initialized data access objects.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .audit_event_repository import AuditEventRepository
    from .booking_repository import BookingRepository
    from .coupon_repository import CouponRepository
    from .coupon_usage_repository import CouponUsageRepository
    from .credit_purchase_repository import CreditPurchaseRepository
    from .credit_repository import CreditRepository
    from .payment_repository import PaymentRepository
    from .room_repository import RoomRepository
    from .setting_repository import SettingRepository
    from .webhook_event_repository import WebhookEventRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_room_repository(db: Session) -> "RoomRepository":
        from .room_repository import RoomRepository

        return RoomRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_credit_repository(db: Session) -> "CreditRepository":
        """Create repository for credit balance reads and guarded writes."""
        from .credit_repository import CreditRepository

        return CreditRepository(db)

    @staticmethod
    def create_credit_purchase_repository(db: Session) -> "CreditPurchaseRepository":
        from .credit_purchase_repository import CreditPurchaseRepository

        return CreditPurchaseRepository(db)

    @staticmethod
    def create_coupon_repository(db: Session) -> "CouponRepository":
        from .coupon_repository import CouponRepository

        return CouponRepository(db)

    @staticmethod
    def create_coupon_usage_repository(db: Session) -> "CouponUsageRepository":
        from .coupon_usage_repository import CouponUsageRepository

        return CouponUsageRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        """Create repository for payment records."""
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> "WebhookEventRepository":
        from .webhook_event_repository import WebhookEventRepository

        return WebhookEventRepository(db)

    @staticmethod
    def create_setting_repository(db: Session) -> "SettingRepository":
        from .setting_repository import SettingRepository

        return SettingRepository(db)

    @staticmethod
    def create_audit_event_repository(db: Session) -> "AuditEventRepository":
        from .audit_event_repository import AuditEventRepository

        return AuditEventRepository(db)
