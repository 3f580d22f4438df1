"""
Pytest configuration for the roombook backend.

Every test gets its own in-memory SQLite database. The environment is set
BEFORE any roombook import so the settings singleton never reads a local
.env file or reaches a real payment gateway.
"""

import os

os.environ["CI"] = "1"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ASAAS_MOCK_MODE"] = "true"
os.environ["ASAAS_API_KEY"] = ""
os.environ["ASAAS_WEBHOOK_TOKEN"] = "test-webhook-token"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-with-enough-entropy-123"
os.environ["APP_PUBLIC_URL"] = "http://testserver"

from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from roombook import models  # noqa: F401  (registers every table on Base.metadata)
from roombook.core.config import settings
from roombook.core.enums import BookingStatus, CreditStatus, FinancialStatus
from roombook.core.timezone_utils import business_datetime, to_business_time, utc_now
from roombook.core.ulid_helper import generate_ulid
from roombook.database import Base, build_engine
from roombook.integrations.asaas_client import FakeAsaasClient
from roombook.models.booking import Booking
from roombook.models.coupon import Coupon
from roombook.models.credit import Credit
from roombook.models.room import Room
from roombook.services.booking_service import BookingService
from roombook.services.contingency_service import invalidate_cache

settings.is_testing = True

# Monday 2026-10-19, 07:00 in the business timezone. Tuesday the 20th is
# the default booking day; Saturday is the 24th, Sunday the 25th.
FIXED_NOW = business_datetime(2026, 10, 19, 7)

Window = Tuple[datetime, datetime]


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def window() -> Callable[..., Window]:
    """``window(10)`` is Tuesday 10:00-11:00 local; ``day`` picks another October day."""

    def _window(hour: int, hours: int = 1, day: int = 20) -> Window:
        start = business_datetime(2026, 10, day, hour)
        return start, start + timedelta(hours=hours)

    return _window


@pytest.fixture
def upcoming_window() -> Callable[..., Window]:
    """A window on the next Tuesday relative to the real clock, for HTTP tests."""

    def _window(hour: int, hours: int = 1) -> Window:
        today = to_business_time(utc_now()).date()
        days_ahead = (1 - today.weekday()) % 7 or 7
        target: date = today + timedelta(days=days_ahead)
        start = business_datetime(target.year, target.month, target.day, hour)
        return start, start + timedelta(hours=hours)

    return _window


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine) -> Session:
    TestingSessionLocal = sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def _fresh_contingency_cache():
    invalidate_cache()
    yield
    invalidate_cache()


# ============================================================================
# Payment gateway and services
# ============================================================================


@pytest.fixture
def gateway() -> FakeAsaasClient:
    return FakeAsaasClient(public_url="http://testserver")


@pytest.fixture
def booking_service(db, gateway) -> BookingService:
    return BookingService(db, gateway=gateway)


@pytest.fixture
def user_id() -> str:
    return generate_ulid()


# ============================================================================
# Builders
# ============================================================================


@pytest.fixture
def make_room(db) -> Callable[..., Room]:
    def _make_room(**overrides: Any) -> Room:
        values: Dict[str, Any] = {
            "name": "Sala Azul",
            "slug": f"sala-{generate_ulid().lower()}",
            "tier": 1,
            "hourly_rate_cents": 5000,
            "saturday_hourly_rate_cents": 6000,
            "shift_rate_cents": 18000,
            "is_active": True,
        }
        values.update(overrides)
        room = Room(**values)
        db.add(room)
        db.commit()
        return room

    return _make_room


@pytest.fixture
def room(make_room) -> Room:
    return make_room()


@pytest.fixture
def make_credit(db) -> Callable[..., Credit]:
    def _make_credit(
        user_id: str,
        amount: int,
        *,
        remaining: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        **overrides: Any,
    ) -> Credit:
        remaining_amount = amount if remaining is None else remaining
        credit = Credit(
            user_id=user_id,
            amount=amount,
            remaining_amount=remaining_amount,
            status=(
                CreditStatus.CONFIRMED.value if remaining_amount > 0 else CreditStatus.USED.value
            ),
            source="PURCHASE",
            expires_at=expires_at,
            **overrides,
        )
        db.add(credit)
        db.commit()
        return credit

    return _make_credit


@pytest.fixture
def make_coupon(db) -> Callable[..., Coupon]:
    def _make_coupon(code: str, discount_type: str = "fixed", value: int = 1000, **kw: Any):
        coupon = Coupon(
            code=code.upper(),
            discount_type=discount_type,
            value=value,
            description=kw.pop("description", f"{code} test coupon"),
            **kw,
        )
        db.add(coupon)
        db.commit()
        return coupon

    return _make_coupon


@pytest.fixture
def make_booking(db) -> Callable[..., Booking]:
    """Insert a booking row directly, bypassing the service rules."""

    def _make_booking(
        user_id: str,
        room: Room,
        start: datetime,
        end: datetime,
        *,
        status: str = BookingStatus.PENDING.value,
        net: int = 5000,
        credits_used: int = 0,
        allocations: Optional[Dict[str, int]] = None,
        **overrides: Any,
    ) -> Booking:
        paid = status in (BookingStatus.CONFIRMED.value, BookingStatus.REFUNDED.value)
        values: Dict[str, Any] = {
            "room_id": room.id,
            "user_id": user_id,
            "start_time": start,
            "end_time": end,
            "status": status,
            "financial_status": (
                FinancialStatus.PAID.value if paid else FinancialStatus.PENDING_PAYMENT.value
            ),
            "gross_amount": net,
            "discount_amount": 0,
            "net_amount": net,
            "credits_used": credits_used,
            "amount_to_pay": net - credits_used,
            "amount_paid": credits_used,
            "refunded_amount": 0,
            "credit_ids": list((allocations or {}).keys()),
            "credit_allocations": dict(allocations or {}),
        }
        values.update(overrides)
        booking = Booking(**values)
        db.add(booking)
        db.commit()
        return booking

    return _make_booking
