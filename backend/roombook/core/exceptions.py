# backend/roombook/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

Business errors come from a closed vocabulary (``BusinessErrorCode``); each
code has exactly one HTTP status. Anything that is not a ``DomainException``
is treated as an internal error at the API boundary and never leaks its
message to the caller.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BusinessErrorCode(str, Enum):
    # Coupons
    COUPON_INVALID = "COUPON_INVALID"
    COUPON_ALREADY_USED = "COUPON_ALREADY_USED"
    COUPON_EXPIRED = "COUPON_EXPIRED"
    COUPON_REQUIRES_CASH_PAYMENT = "COUPON_REQUIRES_CASH_PAYMENT"
    # Credits
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    CREDIT_CONSUMED_BY_ANOTHER = "CREDIT_CONSUMED_BY_ANOTHER"
    CREDIT_EXPIRED = "CREDIT_EXPIRED"
    CREDIT_USAGE_TYPE_MISMATCH = "CREDIT_USAGE_TYPE_MISMATCH"
    # Bookings
    BOOKING_CONFLICT = "BOOKING_CONFLICT"
    BOOKING_OUTSIDE_HOURS = "BOOKING_OUTSIDE_HOURS"
    BOOKING_WINDOW_EXCEEDED = "BOOKING_WINDOW_EXCEEDED"
    INSUFFICIENT_TIME = "INSUFFICIENT_TIME"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    # Payments
    PAYMENT_MIN_AMOUNT = "PAYMENT_MIN_AMOUNT"
    PAYMENT_CREATION_FAILED = "PAYMENT_CREATION_FAILED"
    PRICING_ERROR = "PRICING_ERROR"
    # Auth
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    # Generic
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    RATE_LIMITED = "RATE_LIMITED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_CODE_STATUS: Dict[BusinessErrorCode, int] = {
    BusinessErrorCode.COUPON_INVALID: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.COUPON_ALREADY_USED: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.COUPON_EXPIRED: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.COUPON_REQUIRES_CASH_PAYMENT: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.INSUFFICIENT_CREDITS: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.CREDIT_EXPIRED: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.CREDIT_USAGE_TYPE_MISMATCH: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.BOOKING_OUTSIDE_HOURS: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.BOOKING_WINDOW_EXCEEDED: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.INSUFFICIENT_TIME: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.PAYMENT_MIN_AMOUNT: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.PRICING_ERROR: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    BusinessErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    BusinessErrorCode.EMAIL_NOT_VERIFIED: status.HTTP_403_FORBIDDEN,
    BusinessErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    BusinessErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BusinessErrorCode.BOOKING_CONFLICT: status.HTTP_409_CONFLICT,
    BusinessErrorCode.CREDIT_CONSUMED_BY_ANOTHER: status.HTTP_409_CONFLICT,
    BusinessErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    BusinessErrorCode.BUSINESS_RULE_VIOLATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessErrorCode.DUPLICATE_ENTRY: status.HTTP_409_CONFLICT,
    BusinessErrorCode.PAYMENT_CREATION_FAILED: status.HTTP_409_CONFLICT,
    BusinessErrorCode.INVALID_STATE_TRANSITION: status.HTTP_409_CONFLICT,
    BusinessErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    BusinessErrorCode.SERVICE_UNAVAILABLE: status.HTTP_423_LOCKED,
    BusinessErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

DEFAULT_ERROR_MESSAGES: Dict[BusinessErrorCode, str] = {
    BusinessErrorCode.COUPON_INVALID: "Coupon is invalid or does not exist.",
    BusinessErrorCode.COUPON_ALREADY_USED: "This coupon has already been used.",
    BusinessErrorCode.COUPON_EXPIRED: "This coupon has expired.",
    BusinessErrorCode.COUPON_REQUIRES_CASH_PAYMENT: (
        "Coupons can only be applied to bookings with a cash payment."
    ),
    BusinessErrorCode.INSUFFICIENT_CREDITS: "Insufficient credit balance.",
    BusinessErrorCode.CREDIT_CONSUMED_BY_ANOTHER: "Credits were consumed by another operation.",
    BusinessErrorCode.CREDIT_EXPIRED: "Credits have expired.",
    BusinessErrorCode.CREDIT_USAGE_TYPE_MISMATCH: "Credit cannot be used for this time slot.",
    BusinessErrorCode.BOOKING_CONFLICT: "Time slot unavailable. Another booking overlaps it.",
    BusinessErrorCode.BOOKING_OUTSIDE_HOURS: "Requested time is outside business hours.",
    BusinessErrorCode.BOOKING_WINDOW_EXCEEDED: "Date is outside the allowed booking window.",
    BusinessErrorCode.INSUFFICIENT_TIME: "Bookings must be made further in advance.",
    BusinessErrorCode.INVALID_STATE_TRANSITION: "Booking cannot change to the requested status.",
    BusinessErrorCode.PAYMENT_MIN_AMOUNT: "Amount is below the minimum allowed for payment.",
    BusinessErrorCode.PAYMENT_CREATION_FAILED: "Payment could not be created.",
    BusinessErrorCode.PRICING_ERROR: "Price could not be calculated.",
    BusinessErrorCode.EMAIL_NOT_VERIFIED: "Please verify your e-mail address.",
    BusinessErrorCode.UNAUTHORIZED: "Authentication required.",
    BusinessErrorCode.FORBIDDEN: "Access denied.",
    BusinessErrorCode.VALIDATION_ERROR: "Invalid data.",
    BusinessErrorCode.NOT_FOUND: "Resource not found.",
    BusinessErrorCode.CONFLICT: "Conflicts with an existing operation.",
    BusinessErrorCode.BUSINESS_RULE_VIOLATION: "Business rule violated.",
    BusinessErrorCode.DUPLICATE_ENTRY: "Duplicate entry.",
    BusinessErrorCode.RATE_LIMITED: "Too many attempts. Please wait and try again.",
    BusinessErrorCode.SERVICE_UNAVAILABLE: "Service temporarily unavailable.",
    BusinessErrorCode.INTERNAL_ERROR: "Internal error. Please try again.",
}


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    default_code: BusinessErrorCode = BusinessErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[BusinessErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message or DEFAULT_ERROR_MESSAGES[self.code]
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return ERROR_CODE_STATUS[self.code]

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code.value,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    default_code = BusinessErrorCode.VALIDATION_ERROR


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    default_code = BusinessErrorCode.NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    default_code = BusinessErrorCode.CONFLICT


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    default_code = BusinessErrorCode.UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    default_code = BusinessErrorCode.FORBIDDEN


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    default_code = BusinessErrorCode.BUSINESS_RULE_VIOLATION


class ServiceUnavailableException(DomainException):
    """Raised when a contingency flag switches a capability off."""

    default_code = BusinessErrorCode.SERVICE_UNAVAILABLE


class ServiceException(DomainException):
    """Raised when a service operation fails unexpectedly."""

    default_code = BusinessErrorCode.INTERNAL_ERROR


class BusinessException(DomainException):
    """Raised for a user-facing business rule failure identified by its code."""

    def __init__(
        self,
        code: BusinessErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


# Specific business exceptions


class BookingConflictException(BusinessException):
    """Raised when a booking overlaps an active booking (overbooking)."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(BusinessErrorCode.BOOKING_CONFLICT, message, details)


class InsufficientCreditsException(BusinessException):
    def __init__(self, available_cents: int, required_cents: int):
        super().__init__(
            BusinessErrorCode.INSUFFICIENT_CREDITS,
            details={
                "available_cents": available_cents,
                "required_cents": required_cents,
                "missing_cents": max(0, required_cents - available_cents),
            },
        )
        self.available_cents = available_cents
        self.required_cents = required_cents


class CreditConsumedByAnotherException(BusinessException):
    def __init__(self, credit_id: Optional[str] = None):
        super().__init__(
            BusinessErrorCode.CREDIT_CONSUMED_BY_ANOTHER,
            details={"credit_id": credit_id} if credit_id else None,
        )


class CouponInvalidException(BusinessException):
    def __init__(self, reason: Optional[str] = None, code: Optional[str] = None):
        details: Dict[str, Any] = {}
        if reason:
            details["reason"] = reason
        if code:
            details["coupon_code"] = code
        super().__init__(BusinessErrorCode.COUPON_INVALID, details=details)


class CouponAlreadyUsedException(BusinessException):
    def __init__(self, coupon_code: Optional[str] = None):
        super().__init__(
            BusinessErrorCode.COUPON_ALREADY_USED,
            details={"coupon_code": coupon_code} if coupon_code else None,
        )


class DuplicateEntryException(BusinessException):
    def __init__(self, constraint: Optional[str] = None):
        super().__init__(
            BusinessErrorCode.DUPLICATE_ENTRY,
            details={"constraint": constraint} if constraint else None,
        )


class PaymentMinAmountException(BusinessException):
    def __init__(self, min_cents: int, actual_cents: int, method: str):
        super().__init__(
            BusinessErrorCode.PAYMENT_MIN_AMOUNT,
            message=f"Minimum amount for {method} is {min_cents} cents.",
            details={
                "min_amount_cents": min_cents,
                "actual_amount_cents": actual_cents,
                "payment_method": method,
            },
        )


class PaymentCreationFailedException(BusinessException):
    def __init__(self, booking_id: Optional[str] = None, *, purchase_id: Optional[str] = None):
        if purchase_id:
            super().__init__(
                BusinessErrorCode.PAYMENT_CREATION_FAILED,
                message="Payment could not be created. The credit purchase was cancelled.",
                details={"purchase_id": purchase_id},
            )
            return
        super().__init__(
            BusinessErrorCode.PAYMENT_CREATION_FAILED,
            message="Payment could not be created. The booking was cancelled and credits restored.",
            details={"booking_id": booking_id} if booking_id else None,
        )


class InvalidStateTransitionException(BusinessException):
    def __init__(self, current: str, target: str):
        super().__init__(
            BusinessErrorCode.INVALID_STATE_TRANSITION,
            message=f"Booking cannot move from {current} to {target}.",
            details={"current_status": current, "target_status": target},
        )
        self.current = current
        self.target = target


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


class UniqueViolation(RepositoryException):
    """A uniqueness constraint rejected the write."""

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint


class OverlapViolation(RepositoryException):
    """The booking exclusion constraint rejected an overlapping interval."""

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint
