"""
Contingency flags: stored kill switches read through a short-lived cache.
"""

import pytest

from roombook.core.enums import ContingencyFlag
from roombook.core.exceptions import ServiceUnavailableException
from roombook.models.setting import Setting
from roombook.services.contingency_service import ContingencyService, invalidate_cache


@pytest.fixture
def contingency(db):
    return ContingencyService(db)


class TestFlags:
    def test_all_flags_start_off(self, contingency):
        assert set(contingency.get_flags()) == {flag.value for flag in ContingencyFlag}
        assert not any(contingency.get_flags().values())

    def test_set_flag_is_visible_immediately(self, db, contingency):
        contingency.set_flag(ContingencyFlag.DISABLE_EMAILS, True, updated_by="ops")

        assert contingency.is_enabled(ContingencyFlag.DISABLE_EMAILS)
        row = db.get(Setting, ContingencyFlag.DISABLE_EMAILS.value)
        assert row.value == "true"
        assert row.updated_by == "ops"

        contingency.set_flag(ContingencyFlag.DISABLE_EMAILS, False)
        assert not contingency.is_enabled(ContingencyFlag.DISABLE_EMAILS)

    def test_direct_writes_wait_for_the_cache(self, db, contingency):
        assert not contingency.is_enabled(ContingencyFlag.MAINTENANCE_MODE)

        db.add(Setting(key=ContingencyFlag.MAINTENANCE_MODE.value, value="yes"))
        db.commit()
        assert not contingency.is_enabled(ContingencyFlag.MAINTENANCE_MODE)

        invalidate_cache()
        assert contingency.is_enabled(ContingencyFlag.MAINTENANCE_MODE)

    def test_zero_ttl_always_reads_through(self, db):
        uncached = ContingencyService(db, ttl_seconds=-1)
        assert not uncached.is_enabled(ContingencyFlag.DISABLE_PAYMENTS)

        db.add(Setting(key=ContingencyFlag.DISABLE_PAYMENTS.value, value="TRUE"))
        db.commit()
        assert uncached.is_enabled(ContingencyFlag.DISABLE_PAYMENTS)


class TestEnsureBookingsOpen:
    @pytest.mark.parametrize(
        "flag", [ContingencyFlag.MAINTENANCE_MODE, ContingencyFlag.DISABLE_BOOKINGS]
    )
    def test_bookings_closed(self, contingency, flag):
        contingency.set_flag(flag, True)
        with pytest.raises(ServiceUnavailableException) as exc_info:
            contingency.ensure_bookings_open(requires_payment=False)
        assert exc_info.value.details == {"reason": "BOOKINGS_DISABLED"}

    def test_payments_disabled_only_blocks_cash_bookings(self, contingency):
        contingency.set_flag(ContingencyFlag.DISABLE_PAYMENTS, True)

        contingency.ensure_bookings_open(requires_payment=False)
        with pytest.raises(ServiceUnavailableException) as exc_info:
            contingency.ensure_bookings_open(requires_payment=True)
        assert exc_info.value.details == {"reason": "PAYMENTS_DISABLED"}
