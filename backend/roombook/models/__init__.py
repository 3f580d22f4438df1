"""
Database models for the booking engine.

- Room: the bookable resource and its price list
- Booking: reservations and their lifecycle
- Credit: prepaid balance grants
- CreditPurchase: credit packages bought through the gateway
- Coupon / CouponUsage: discounts and single-use redemptions
- Payment: external gateway charges
- WebhookEvent: inbound callback ledger
- Setting: contingency flags
- AuditEvent: audit trail
"""

from .audit_event import AuditEvent
from .booking import Booking
from .coupon import Coupon, CouponUsage
from .credit import Credit
from .credit_purchase import CreditPurchase
from .payment import Payment
from .room import Room
from .setting import Setting
from .webhook_event import WebhookEvent

__all__ = [
    "AuditEvent",
    "Booking",
    "Coupon",
    "CouponUsage",
    "Credit",
    "CreditPurchase",
    "Payment",
    "Room",
    "Setting",
    "WebhookEvent",
]
