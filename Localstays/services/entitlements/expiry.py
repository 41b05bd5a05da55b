"""
Slot expiry arithmetic.

Billing periods are added with calendar-month semantics: the day of month is
kept when it exists in the target month and clamped to the month's last day
otherwise (Jan 31 + MONTHLY -> Feb 28/29). Every computed expiry is
normalised to the last millisecond of its day.
"""

from __future__ import annotations

import calendar
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from Localstays.database.models.base import BillingPeriod

PERIOD_MONTHS = {
    BillingPeriod.MONTHLY: 1,
    BillingPeriod.QUARTERLY: 3,
    BillingPeriod.SEMI_ANNUAL: 6,
    BillingPeriod.YEARLY: 12,
}

_DAY = timedelta(days=1)


class SlotDisplayStatus(str, Enum):
    AUTO_RENEWS = "AUTO_RENEWS"
    EXPIRES = "EXPIRES"
    EXPIRING_SOON = "EXPIRING_SOON"
    PAST_DUE = "PAST_DUE"
    COMMISSION = "COMMISSION"


def _coerce_period(period: Union[BillingPeriod, str, None]) -> BillingPeriod:
    if period is None:
        return BillingPeriod.MONTHLY
    if isinstance(period, BillingPeriod):
        return period
    try:
        return BillingPeriod(period)
    except ValueError:
        return BillingPeriod.MONTHLY


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_billing_period(value: datetime, period: Union[BillingPeriod, str, None]) -> datetime:
    """Advance ``value`` by one billing period; unknown periods count as MONTHLY."""
    return add_months(value, PERIOD_MONTHS[_coerce_period(period)])


def end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999000)


def new_slot_expiry(
    creation_date: datetime,
    period: Union[BillingPeriod, str, None],
    compensation_days: int = 0,
) -> datetime:
    """Expiry for a freshly created slot.

    A full billing period from the slot's own creation date (not the host's
    current cycle), plus compensation days, at end of day.
    """
    expires = add_billing_period(creation_date, period)
    if compensation_days > 0:
        expires = expires + timedelta(days=compensation_days)
    return end_of_day(expires)


def renewal_expiry(period_end: datetime, compensation_days: int = 0) -> datetime:
    """Expiry recomputed at renewal or plan change: period end plus compensation, end of day."""
    expires = period_end
    if compensation_days > 0:
        expires = expires + timedelta(days=compensation_days)
    return end_of_day(expires)


def days_remaining(expires_at: Optional[datetime], now: datetime) -> Optional[int]:
    if expires_at is None:
        return None
    return max(0, math.ceil((expires_at - now) / _DAY))


def slot_display_status(
    *,
    expires_at: Optional[datetime],
    do_not_renew: bool,
    is_past_due: bool,
    cancel_at_period_end: bool,
    now: datetime,
    expiring_soon_days: int = 7,
) -> SlotDisplayStatus:
    if expires_at is None:
        return SlotDisplayStatus.COMMISSION
    if is_past_due:
        return SlotDisplayStatus.PAST_DUE

    ending = do_not_renew or cancel_at_period_end
    days_until_expiry = math.ceil((expires_at - now) / _DAY)
    if ending and days_until_expiry <= expiring_soon_days:
        return SlotDisplayStatus.EXPIRING_SOON
    if ending:
        return SlotDisplayStatus.EXPIRES
    return SlotDisplayStatus.AUTO_RENEWS


__all__ = [
    "PERIOD_MONTHS",
    "SlotDisplayStatus",
    "add_months",
    "add_billing_period",
    "end_of_day",
    "new_slot_expiry",
    "renewal_expiry",
    "days_remaining",
    "slot_display_status",
]
