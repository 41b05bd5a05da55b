"""Tests for billing-period arithmetic, slot expiry and display status."""

from datetime import datetime, timedelta

import pytest

from Localstays.database.models import BillingPeriod
from Localstays.services.entitlements.expiry import (
    SlotDisplayStatus,
    add_billing_period,
    add_months,
    days_remaining,
    end_of_day,
    new_slot_expiry,
    renewal_expiry,
    slot_display_status,
)


class TestAddBillingPeriod:
    @pytest.mark.parametrize(
        "start, period, expected",
        [
            (datetime(2025, 1, 31), BillingPeriod.MONTHLY, datetime(2025, 2, 28)),
            (datetime(2024, 1, 31), BillingPeriod.MONTHLY, datetime(2024, 2, 29)),
            (datetime(2025, 3, 31), BillingPeriod.MONTHLY, datetime(2025, 4, 30)),
            (datetime(2025, 12, 15), BillingPeriod.MONTHLY, datetime(2026, 1, 15)),
            (datetime(2025, 11, 30), BillingPeriod.QUARTERLY, datetime(2026, 2, 28)),
            (datetime(2025, 8, 31), BillingPeriod.SEMI_ANNUAL, datetime(2026, 2, 28)),
            (datetime(2024, 2, 29), BillingPeriod.YEARLY, datetime(2025, 2, 28)),
        ],
    )
    def test_calendar_months_with_clamping(self, start, period, expected):
        assert add_billing_period(start, period) == expected

    def test_accepts_string_period(self):
        assert add_billing_period(datetime(2025, 1, 10), "QUARTERLY") == datetime(2025, 4, 10)

    def test_unknown_or_missing_period_is_monthly(self):
        assert add_billing_period(datetime(2025, 1, 10), "WEEKLY") == datetime(2025, 2, 10)
        assert add_billing_period(datetime(2025, 1, 10), None) == datetime(2025, 2, 10)

    def test_time_of_day_is_kept(self):
        assert add_months(datetime(2025, 5, 31, 8, 30), 1) == datetime(2025, 6, 30, 8, 30)


class TestNewSlotExpiry:
    def test_full_period_from_creation_not_cycle_end(self):
        # MONTHLY cycle Dec 1 - Dec 31, published Dec 15
        expires = new_slot_expiry(datetime(2025, 12, 15, 10, 0), BillingPeriod.MONTHLY, 0)
        assert expires == datetime(2026, 1, 15, 23, 59, 59, 999000)

    def test_compensation_days_are_added(self):
        expires = new_slot_expiry(datetime(2025, 12, 15, 10, 0), BillingPeriod.MONTHLY, 9)
        assert expires == datetime(2026, 1, 24, 23, 59, 59, 999000)

    def test_negative_compensation_is_ignored(self):
        assert new_slot_expiry(datetime(2025, 1, 1), BillingPeriod.MONTHLY, -3) == end_of_day(datetime(2025, 2, 1))

    @pytest.mark.parametrize("period", list(BillingPeriod))
    @pytest.mark.parametrize(
        "created",
        [datetime(2024, 1, 31), datetime(2025, 1, 31), datetime(2025, 5, 31, 18, 45), datetime(2025, 12, 1)],
    )
    def test_zero_compensation_is_one_calendar_period(self, period, created):
        expected = end_of_day(add_billing_period(created, period))
        assert new_slot_expiry(created, period, 0) == expected
        assert expected.day <= created.day


class TestRenewalExpiry:
    def test_period_end_plus_compensation(self):
        assert renewal_expiry(datetime(2026, 2, 28), 3) == datetime(2026, 3, 3, 23, 59, 59, 999000)

    def test_without_compensation(self):
        assert renewal_expiry(datetime(2026, 1, 31, 4, 0)) == datetime(2026, 1, 31, 23, 59, 59, 999000)


class TestDaysRemaining:
    def test_commission_slot_has_none(self):
        assert days_remaining(None, datetime(2025, 1, 1)) is None

    def test_partial_days_round_up(self):
        now = datetime(2025, 1, 1)
        assert days_remaining(now + timedelta(days=1, hours=12), now) == 2

    def test_past_expiry_is_zero(self):
        now = datetime(2025, 1, 10)
        assert days_remaining(datetime(2025, 1, 1), now) == 0


class TestSlotDisplayStatus:
    now = datetime(2025, 12, 15)

    def _status(self, expires_at, do_not_renew=False, is_past_due=False, cancel_at_period_end=False):
        return slot_display_status(
            expires_at=expires_at,
            do_not_renew=do_not_renew,
            is_past_due=is_past_due,
            cancel_at_period_end=cancel_at_period_end,
            now=self.now,
            expiring_soon_days=7,
        )

    def test_commission(self):
        assert self._status(None) == SlotDisplayStatus.COMMISSION

    def test_past_due_wins(self):
        assert self._status(self.now + timedelta(days=2), do_not_renew=True, is_past_due=True) == SlotDisplayStatus.PAST_DUE

    def test_expiring_soon_only_when_ending(self):
        soon = self.now + timedelta(days=5)
        assert self._status(soon, do_not_renew=True) == SlotDisplayStatus.EXPIRING_SOON
        assert self._status(soon, cancel_at_period_end=True) == SlotDisplayStatus.EXPIRING_SOON
        assert self._status(soon) == SlotDisplayStatus.AUTO_RENEWS

    def test_expires_when_ending_later(self):
        assert self._status(self.now + timedelta(days=20), do_not_renew=True) == SlotDisplayStatus.EXPIRES
