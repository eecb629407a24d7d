"""
Billing Arithmetic

Pure functions for proration, billing periods, refund windows and
minor-unit conversion. No I/O; callers pass the clock in.

All datetimes are naive UTC, matching the ledger's TIMESTAMP WITHOUT TIME ZONE columns.
"""

import calendar
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from app.domain.billing import PlanInterval


CENT = Decimal("0.01")
ZERO = Decimal("0.00")
MINOR_UNITS_PER_MAJOR = 100
SECONDS_PER_DAY = 86400

Money = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class UpgradeCharge:
    """
    Prorated charge for moving to a more expensive plan.

    credit is the unused value of the current plan; amount_to_pay is never negative.
    """
    total_days: int
    remaining_days: int
    credit: Decimal
    amount_to_pay: Decimal


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_timestamp(value: int) -> datetime:
    """Unix seconds (as sent by the gateway) to naive UTC."""
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def to_money(value: Money) -> Decimal:
    """Round to two decimals, half up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Money) -> int:
    """Convert a major-unit amount (e.g. rupees) to minor units (paise)."""
    minor = to_money(amount) * MINOR_UNITS_PER_MAJOR
    return int(minor.to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """Convert minor units back to a two-decimal major amount."""
    return (Decimal(int(amount)) / MINOR_UNITS_PER_MAJOR).quantize(CENT)


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def elapsed_days(since: datetime, now: datetime) -> int:
    """Whole days since ``since``, rounded up. A partial day counts as a day."""
    return max(0, _ceil_days(as_naive_utc(now) - as_naive_utc(since)))


def compute_upgrade_charge(
    current_plan_price: Money,
    new_plan_price: Money,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> UpgradeCharge:
    """
    Compute the credit and charge for an upgrade in the middle of a period.

    totalDays = ceil(period length in days), remainingDays = max(0, ceil(days to end)),
    credit = currentPrice / totalDays * remainingDays, amount = max(0, newPrice - credit).

    Args:
        current_plan_price: Price of the plan being left
        new_plan_price: Price of the plan being moved to
        period_start: Start of the current billing period
        period_end: End of the current billing period
        now: Evaluation time

    Returns:
        UpgradeCharge with credit and amount rounded to two decimals
    """
    period_start = as_naive_utc(period_start)
    period_end = as_naive_utc(period_end)
    now = as_naive_utc(now)

    total_days = max(1, _ceil_days(period_end - period_start))
    remaining_days = min(total_days, max(0, _ceil_days(period_end - now)))

    current_price = Decimal(str(current_plan_price))
    credit = to_money(current_price * remaining_days / total_days)
    amount_to_pay = max(ZERO, to_money(Decimal(str(new_plan_price)) - credit))

    return UpgradeCharge(
        total_days=total_days,
        remaining_days=remaining_days,
        credit=credit,
        amount_to_pay=amount_to_pay,
    )


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def advance_period(start: datetime, interval: Union[PlanInterval, str]) -> datetime:
    """
    End of a billing period that begins at ``start``.

    Month-end dates clamp (Jan 31 -> Feb 28/29); yearly periods from Feb 29
    land on Feb 28.
    """
    interval = PlanInterval(interval)
    if interval == PlanInterval.YEAR:
        return _add_months(start, 12)
    return _add_months(start, 1)
