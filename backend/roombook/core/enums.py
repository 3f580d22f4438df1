# backend/roombook/core/enums.py
"""
Core enums for the booking, credit and payment engine.

Values are stored as plain strings in the database so they stay readable
from SQL and stable across migrations.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles carried by the authentication layer."""

    ADMIN = "ADMIN"
    CUSTOMER = "CUSTOMER"


class BookingStatus(str, Enum):
    """
    Booking lifecycle status.

    CONFIRMED, CANCELLED and REFUNDED are terminal for the purposes of
    downgrade protection: nothing moves them back to PENDING.
    """

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class FinancialStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"


class CancelSource(str, Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"
    ADMIN = "ADMIN"
    WEBHOOK = "WEBHOOK"


class CancelReason(str, Enum):
    """Machine-distinguishable cancellation reasons for audit trails."""

    USER_CANCELLED_PENDING = "USER_CANCELLED_PENDING"
    EXPIRED_NO_PAYMENT = "EXPIRED_NO_PAYMENT"
    PAYMENT_CREATION_FAILED = "PAYMENT_CREATION_FAILED"
    ADMIN_CANCELLED = "ADMIN_CANCELLED"


class CreditStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    USED = "USED"


class CreditUsageType(str, Enum):
    """Restriction on which days/durations a credit may fund. NULL means legacy."""

    HOURLY = "HOURLY"
    SHIFT = "SHIFT"
    SATURDAY_HOURLY = "SATURDAY_HOURLY"
    SATURDAY_SHIFT = "SATURDAY_SHIFT"


class CreditType(str, Enum):
    """Kind of grant. Only legacy credits (no usage type) look at it."""

    MANUAL = "MANUAL"
    SATURDAY = "SATURDAY"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    IN_PROCESS = "IN_PROCESS"
    REJECTED = "REJECTED"
    REFUNDED = "REFUNDED"


ACTIVE_PAYMENT_STATUSES = (
    PaymentStatus.PENDING.value,
    PaymentStatus.APPROVED.value,
    PaymentStatus.IN_PROCESS.value,
)


class PaymentMethod(str, Enum):
    PIX = "PIX"
    CARD = "CARD"


class PaymentEntityKind(str, Enum):
    BOOKING = "booking"
    PURCHASE = "purchase"


class PurchaseStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class CouponContext(str, Enum):
    BOOKING = "BOOKING"
    PURCHASE = "PURCHASE"


class CouponUsageStatus(str, Enum):
    USED = "USED"
    RESTORED = "RESTORED"


class DiscountType(str, Enum):
    FIXED = "fixed"
    PERCENT = "percent"
    PRICE_OVERRIDE = "price_override"


class WebhookEventStatus(str, Enum):
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"
    IGNORED_NOT_FOUND = "IGNORED_NOT_FOUND"
    IGNORED_NO_REFERENCE = "IGNORED_NO_REFERENCE"
    IGNORED_EVENT_TYPE = "IGNORED_EVENT_TYPE"


class ContingencyFlag(str, Enum):
    MAINTENANCE_MODE = "MAINTENANCE_MODE"
    DISABLE_PAYMENTS = "DISABLE_PAYMENTS"
    DISABLE_BOOKINGS = "DISABLE_BOOKINGS"
    DISABLE_EMAILS = "DISABLE_EMAILS"
    DISABLE_WEBHOOKS = "DISABLE_WEBHOOKS"


class AuditAction(str, Enum):
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_EXPIRED = "BOOKING_EXPIRED"
    BOOKING_REFUNDED = "BOOKING_REFUNDED"
    BOOKING_PARTIALLY_REFUNDED = "BOOKING_PARTIALLY_REFUNDED"
    BOOKING_UPDATED = "BOOKING_UPDATED"
    PAYMENT_COMPENSATED = "PAYMENT_COMPENSATED"
    PROTECTED_DOWNGRADE_BLOCKED = "PROTECTED_DOWNGRADE_BLOCKED"
    COUPON_RESTORED = "COUPON_RESTORED"
    CREDIT_PURCHASE_CREATED = "CREDIT_PURCHASE_CREATED"
    CREDIT_PURCHASE_PAID = "CREDIT_PURCHASE_PAID"
    CREDIT_PURCHASE_CANCELLED = "CREDIT_PURCHASE_CANCELLED"
    CREDIT_PURCHASE_REFUNDED = "CREDIT_PURCHASE_REFUNDED"
