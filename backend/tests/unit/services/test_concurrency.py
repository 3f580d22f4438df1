"""
Competing sessions on one database file.

Each worker owns its own connection and session, the way two API workers
would. Writers meet on the database lock; whatever order they land in,
money and coupons must come out consistent.
"""

import threading
from typing import Any, Callable, List, Tuple

import pytest
from sqlalchemy.orm import sessionmaker

from roombook.core.enums import ACTIVE_BOOKING_STATUSES, CouponUsageStatus, CreditStatus
from roombook.core.exceptions import BookingConflictException, CouponAlreadyUsedException
from roombook.core.ulid_helper import generate_ulid
from roombook.database import Base, build_engine
from roombook.models.booking import Booking
from roombook.models.coupon import Coupon, CouponUsage
from roombook.models.credit import Credit
from roombook.models.room import Room
from roombook.repositories.credit_repository import CreditRepository
from roombook.services.booking_service import BookingService, CreateBookingCommand

Outcome = Tuple[str, Any]


@pytest.fixture
def file_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'roombook.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(file_engine):
    return sessionmaker(
        bind=file_engine, autocommit=False, autoflush=False, expire_on_commit=False
    )


@pytest.fixture
def seed(session_factory):
    def _seed(*rows):
        session = session_factory()
        try:
            session.add_all(rows)
            session.commit()
        finally:
            session.close()
        return rows

    return _seed


@pytest.fixture
def shared_room(seed):
    room = Room(
        name="Sala Azul",
        slug=f"sala-{generate_ulid().lower()}",
        tier=1,
        hourly_rate_cents=5000,
        saturday_hourly_rate_cents=6000,
        shift_rate_cents=18000,
        is_active=True,
    )
    seed(room)
    return room


def _credit(user_id, amount):
    return Credit(
        user_id=user_id,
        amount=amount,
        remaining_amount=amount,
        status=CreditStatus.CONFIRMED.value,
        source="PURCHASE",
    )


def _race(*calls: Callable[[], Any]) -> List[Outcome]:
    """Start every call at the same instant on its own thread."""
    barrier = threading.Barrier(len(calls))
    outcomes: List[Outcome] = [("pending", None)] * len(calls)

    def run(index, call):
        barrier.wait()
        try:
            outcomes[index] = ("ok", call())
        except Exception as exc:
            outcomes[index] = ("error", exc)

    threads = [threading.Thread(target=run, args=(i, c)) for i, c in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


@pytest.fixture
def book(session_factory, gateway, now):
    """A booking attempt running in a session of its own."""

    def _book(user_id, room, start, end, **fields):
        def attempt():
            session = session_factory()
            try:
                service = BookingService(session, gateway=gateway)
                created = service.create_booking_with_credit(
                    CreateBookingCommand(
                        user_id=user_id,
                        room_id=room.id,
                        start_time=start,
                        end_time=end,
                        **fields,
                    ),
                    now=now,
                )
                return created.booking.id, created.credits_used
            finally:
                session.close()

        return attempt

    return _book


def _split(outcomes):
    wins = [value for kind, value in outcomes if kind == "ok"]
    losses = [value for kind, value in outcomes if kind == "error"]
    return wins, losses


class TestOverlappingCreates:
    def test_one_booking_wins_the_slot(self, session_factory, seed, shared_room, book, window):
        first, second = generate_ulid(), generate_ulid()
        seed(_credit(first, 5000), _credit(second, 5000))
        start, end = window(10)

        wins, losses = _split(
            _race(
                book(first, shared_room, start, end),
                book(second, shared_room, start, end),
            )
        )

        assert len(wins) == 1
        assert len(losses) == 1
        assert isinstance(losses[0], BookingConflictException)
        session = session_factory()
        try:
            active = (
                session.query(Booking)
                .filter(Booking.status.in_(ACTIVE_BOOKING_STATUSES))
                .all()
            )
            assert [b.id for b in active] == [wins[0][0]]
            # The loser's debit rolled back with its transaction.
            remaining = sorted(c.remaining_amount for c in session.query(Credit).all())
            assert remaining == [0, 5000]
        finally:
            session.close()


class TestCouponRedemption:
    def test_single_use_coupon_is_redeemed_once(
        self, session_factory, seed, shared_room, book, window
    ):
        user = generate_ulid()
        seed(Coupon(code="PRIMEIRA", discount_type="fixed", value=1000, description="first"))

        wins, losses = _split(
            _race(
                book(user, shared_room, *window(9), coupon_code="PRIMEIRA"),
                book(user, shared_room, *window(15), coupon_code="PRIMEIRA"),
            )
        )

        assert len(wins) == 1
        assert len(losses) == 1
        assert isinstance(losses[0], CouponAlreadyUsedException)
        session = session_factory()
        try:
            usage = session.query(CouponUsage).one()
            assert usage.status == CouponUsageStatus.USED.value
            assert usage.booking_id == wins[0][0]
            assert session.query(Booking).count() == 1
        finally:
            session.close()


class TestCreditDebits:
    def test_concurrent_bookings_never_spend_a_credit_twice(
        self, session_factory, seed, shared_room, book, window
    ):
        user = generate_ulid()
        (credit,) = seed(_credit(user, 6000))

        wins, losses = _split(
            _race(
                book(user, shared_room, *window(9)),
                book(user, shared_room, *window(15)),
            )
        )

        assert losses == []
        # Whoever came second found only 1000 left and pays the rest.
        assert sorted(used for _, used in wins) == [1000, 5000]
        session = session_factory()
        try:
            refreshed = session.get(Credit, credit.id)
            assert refreshed.remaining_amount == 0
            assert refreshed.status == CreditStatus.USED.value
        finally:
            session.close()

    def test_stale_reader_cannot_overdraw(self, session_factory, seed, now):
        (credit,) = seed(_credit(generate_ulid(), 1000))
        stale, fresh = session_factory(), session_factory()
        try:
            # The stale session saw 1000 available and then let go of the lock.
            seen = stale.get(Credit, credit.id)
            assert seen.remaining_amount == 1000
            stale.commit()

            assert CreditRepository(fresh).debit(credit.id, 700, now)
            fresh.commit()

            assert not CreditRepository(stale).debit(credit.id, 700, now)
            stale.commit()
        finally:
            stale.close()
            fresh.close()

        check = session_factory()
        try:
            assert check.get(Credit, credit.id).remaining_amount == 300
        finally:
            check.close()
