"""Debit and restore planning over several credit grants."""

from datetime import datetime, timedelta, timezone

from hypothesis import given
from hypothesis import strategies as st
import pytest

from roombook.core.exceptions import InsufficientCreditsException
from roombook.domain.credit_allocation import CreditSlice, plan_debit, plan_restore

BASE = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _slice(credit_id, remaining, expires_in_days=None, created_days_ago=0):
    return CreditSlice(
        credit_id=credit_id,
        remaining=remaining,
        expires_at=BASE + timedelta(days=expires_in_days) if expires_in_days is not None else None,
        created_at=BASE - timedelta(days=created_days_ago),
    )


slices = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=20000),
        st.one_of(st.none(), st.integers(min_value=1, max_value=365)),
    ),
    min_size=1,
    max_size=6,
).map(lambda rows: [_slice(f"c{i}", rem, exp) for i, (rem, exp) in enumerate(rows)])


class TestPlanDebit:
    def test_nearest_expiry_is_drained_first(self):
        credits = [
            _slice("late", 10000, expires_in_days=60),
            _slice("soon", 3000, expires_in_days=10),
        ]
        assert plan_debit(credits, 5000) == {"soon": 3000, "late": 2000}

    def test_credits_without_expiry_come_last(self):
        credits = [_slice("forever", 5000), _slice("dated", 5000, expires_in_days=300)]
        assert plan_debit(credits, 6000) == {"dated": 5000, "forever": 1000}

    def test_ties_broken_by_creation_date(self):
        credits = [
            _slice("newer", 1000, expires_in_days=5, created_days_ago=1),
            _slice("older", 1000, expires_in_days=5, created_days_ago=9),
        ]
        assert list(plan_debit(credits, 1500)) == ["older", "newer"]

    def test_zero_amount_takes_nothing(self):
        assert plan_debit([_slice("a", 100)], 0) == {}

    def test_insufficient_balance(self):
        with pytest.raises(InsufficientCreditsException) as exc_info:
            plan_debit([_slice("a", 1000), _slice("b", 500)], 2000)
        assert exc_info.value.details == {
            "available_cents": 1500,
            "required_cents": 2000,
            "missing_cents": 500,
        }

    @given(credits=slices, data=st.data())
    def test_plan_covers_amount_within_each_balance(self, credits, data):
        available = sum(c.remaining for c in credits)
        amount = data.draw(st.integers(min_value=0, max_value=available))
        plan = plan_debit(credits, amount)

        by_id = {c.credit_id: c.remaining for c in credits}
        assert sum(plan.values()) == amount
        assert all(0 < take <= by_id[credit_id] for credit_id, take in plan.items())


class TestPlanRestore:
    def test_full_restore_returns_each_allocation(self):
        allocations = {"a": 3000, "b": 2000}
        assert plan_restore(allocations, {"a": 3000, "b": 2000}, 5000) == allocations

    def test_partial_restore_is_proportional(self):
        allocations = {"a": 3000, "b": 2000}
        assert plan_restore(allocations, {"a": 3000, "b": 2000}, 1000) == {"a": 600, "b": 400}

    def test_clamped_by_headroom(self):
        # Credit "a" was topped up elsewhere and can only take 500 back.
        plan = plan_restore({"a": 3000, "b": 2000}, {"a": 500, "b": 2000}, 5000)
        assert plan == {"a": 500, "b": 2000}

    def test_never_more_than_consumed(self):
        assert sum(plan_restore({"a": 1000}, {"a": 5000}, 9000).values()) == 1000

    def test_leftover_cents_are_distributed(self):
        plan = plan_restore({"a": 1, "b": 1, "c": 1}, {"a": 1, "b": 1, "c": 1}, 2)
        assert sum(plan.values()) == 2
        assert all(v == 1 for v in plan.values())

    def test_nothing_to_restore(self):
        assert plan_restore({}, {}, 1000) == {}
        assert plan_restore({"a": 1000}, {"a": 0}, 1000) == {}

    @given(
        rows=st.lists(
            st.tuples(st.integers(0, 10000), st.integers(0, 10000)), min_size=1, max_size=6
        ),
        amount=st.integers(min_value=0, max_value=70000),
    )
    def test_restore_respects_every_bound(self, rows, amount):
        allocations = {f"c{i}": taken for i, (taken, _) in enumerate(rows)}
        headroom = {f"c{i}": room for i, (_, room) in enumerate(rows)}
        plan = plan_restore(allocations, headroom, amount)

        caps = {k: min(allocations[k], headroom[k]) for k in allocations}
        assert sum(plan.values()) == min(amount, sum(allocations.values()), sum(caps.values()))
        assert all(0 < give <= caps[k] for k, give in plan.items())
