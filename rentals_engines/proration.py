"""
Module: rentals_engines.proration
Responsibility:
    Partial-period rent: the charge for the days of a month a tenant
    actually occupies (move-in, move-out, or every partial month of a
    lease term).

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Billing days are UTC calendar days, inclusive of the end date by
      default (the same day convention as the status calculator).
    - Day basis by method: DAILY uses the actual length of the month,
      CALENDAR and BANKING use 30-day months.
    - Order of adjustments: grace days zero the charge, then a positive
      charge is raised to ``minimum_charge``, then rounding is applied.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from enum import Enum

from rentals_kernel.domain.payment import ZERO
from rentals_engines.tracer import traced_engine

_TWO_PLACES = Decimal("0.01")


class ProrationMethod(str, Enum):
    DAILY = "daily"
    CALENDAR = "calendar"
    BANKING = "banking"


class RoundingMethod(str, Enum):
    ROUND = "round"
    FLOOR = "floor"
    CEIL = "ceil"


_ROUNDING_MODES = {
    RoundingMethod.ROUND: ROUND_HALF_UP,
    RoundingMethod.FLOOR: ROUND_FLOOR,
    RoundingMethod.CEIL: ROUND_CEILING,
}


@dataclass(frozen=True)
class ProrationConfig:
    method: ProrationMethod = ProrationMethod.DAILY
    rounding: RoundingMethod = RoundingMethod.ROUND
    minimum_charge: Decimal = ZERO
    grace_days: int = 0
    include_end_date: bool = True


@dataclass(frozen=True)
class ProrationBreakdown:
    start_date: date
    end_date: date
    billing_days: int
    days_in_month: int
    monthly_rent: Decimal
    daily_rate: Decimal
    prorated_amount: Decimal
    savings: Decimal
    method: ProrationMethod


@dataclass(frozen=True)
class ProrationResult:
    total_prorated: Decimal
    total_savings: Decimal
    original_amount: Decimal
    total_days: int
    average_daily_rate: Decimal
    breakdowns: tuple[ProrationBreakdown, ...]


def _round(value: Decimal, method: RoundingMethod) -> Decimal:
    return value.quantize(_TWO_PLACES, rounding=_ROUNDING_MODES[method])


def days_in_month(day: date, method: ProrationMethod) -> int:
    if method is ProrationMethod.DAILY:
        return calendar.monthrange(day.year, day.month)[1]
    return 30


def billing_days(start: date, end: date, include_end_date: bool = True) -> int:
    days = (end - start).days
    return days + 1 if include_end_date else days


def _month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


@traced_engine(
    "proration", "1.0",
    fingerprint_fields=("monthly_rent", "start", "end", "config"),
)
def prorate_period(
    monthly_rent: Decimal,
    start: date,
    end: date,
    config: ProrationConfig = ProrationConfig(),
) -> ProrationBreakdown:
    """Charge for ``start..end`` at the daily rate of ``start``'s month."""
    if end < start:
        raise ValueError(f"Proration end {end} is before start {start}")

    days = billing_days(start, end, config.include_end_date)
    month_days = days_in_month(start, config.method)
    daily_rate = monthly_rent / month_days
    amount = daily_rate * days

    if config.grace_days > 0 and days <= config.grace_days:
        amount = ZERO
    if ZERO < amount < config.minimum_charge:
        amount = config.minimum_charge

    amount = _round(amount, config.rounding)
    return ProrationBreakdown(
        start_date=start,
        end_date=end,
        billing_days=days,
        days_in_month=month_days,
        monthly_rent=monthly_rent,
        daily_rate=_round(daily_rate, config.rounding),
        prorated_amount=amount,
        savings=monthly_rent - amount,
        method=config.method,
    )


def prorate_move_in(
    monthly_rent: Decimal,
    move_in: date,
    config: ProrationConfig = ProrationConfig(),
) -> ProrationBreakdown:
    return prorate_period(monthly_rent, move_in, _month_end(move_in), config)


def prorate_move_out(
    monthly_rent: Decimal,
    move_out: date,
    config: ProrationConfig = ProrationConfig(),
) -> ProrationBreakdown:
    return prorate_period(monthly_rent, move_out.replace(day=1), move_out, config)


def prorate_lease(
    monthly_rent: Decimal,
    lease_start: date,
    lease_end: date,
    config: ProrationConfig = ProrationConfig(),
) -> ProrationResult:
    """Prorate every partial month of a lease; full months are skipped."""
    breakdowns: list[ProrationBreakdown] = []
    current = lease_start
    while current <= lease_end:
        month_start = current.replace(day=1)
        month_end = _month_end(current)
        period_start = max(current, month_start)
        period_end = min(lease_end, month_end)
        if period_start > month_start or period_end < month_end:
            breakdowns.append(prorate_period(monthly_rent, period_start, period_end, config))
        current = month_end + timedelta(days=1)

    total = sum((b.prorated_amount for b in breakdowns), ZERO)
    savings = sum((b.savings for b in breakdowns), ZERO)
    total_days = sum(b.billing_days for b in breakdowns)
    average = total / total_days if total_days else ZERO
    return ProrationResult(
        total_prorated=_round(total, config.rounding),
        total_savings=_round(savings, config.rounding),
        original_amount=_round(monthly_rent * len(breakdowns), config.rounding),
        total_days=total_days,
        average_daily_rate=_round(average, config.rounding),
        breakdowns=tuple(breakdowns),
    )


def compare_methods(
    monthly_rent: Decimal,
    start: date,
    end: date,
) -> dict[ProrationMethod, ProrationBreakdown]:
    return {
        method: prorate_period(monthly_rent, start, end, ProrationConfig(method=method))
        for method in ProrationMethod
    }
