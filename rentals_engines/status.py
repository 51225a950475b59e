"""
Module: rentals_engines.status
Responsibility:
    Derive a payment's calendar status from its due date and "now" under
    a fixed precedence order, and report days until due / days overdue.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import rentals_kernel.domain and rentals_kernel.exceptions.

Invariants enforced:
    - Day arithmetic uses UTC calendar dates: a datetime "now" is
      normalized to UTC (naive values are taken as UTC) and truncated.
    - ``days_until_due`` and ``days_overdue`` are clamped to >= 0 and are
      never both positive; both are zero only on the due date.
    - Exactly one status is returned, chosen by first match:
        UPCOMING          days_until_due >  upcoming_threshold
        DUE_SOON          0 < days_until_due <= due_soon_threshold
        DUE_TODAY         both zero
        GRACE_PERIOD      0 < days_overdue <= grace_period
        LATE              grace_period < days_overdue < severely_overdue
        SEVERELY_OVERDUE  days_overdue >= severely_overdue
    - ``StatusThresholds`` rejects values that would leave a gap
      (``due_soon < upcoming``), so the no-match branch is unreachable.

Failure modes:
    - ValueError from ``StatusThresholds`` for negative or gapped values.
    - StatusDerivationError if no precedence branch matches.  With
      validated thresholds this cannot happen; it is raised instead of
      silently returning PENDING.

Usage:
    from datetime import date
    from rentals_engines.status import calculate_status, StatusThresholds

    calc = calculate_status(date(2024, 1, 1), date(2024, 1, 10))
    calc.status        # PaymentStatus.LATE
    calc.days_overdue  # 9
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone

from rentals_kernel.domain.payment import PaymentStatus
from rentals_kernel.exceptions import StatusDerivationError
from rentals_engines.tracer import traced_engine


@dataclass(frozen=True)
class StatusThresholds:
    """
    Day thresholds for status derivation.

    ``late_fee_threshold_days`` is the minimum days overdue before the
    status pass charges a payment's embedded late fee on entering LATE.

    Guarantees:
        - All thresholds are >= 0.
        - ``due_soon_threshold_days >= upcoming_threshold_days`` so every
          positive days-until-due value maps to UPCOMING or DUE_SOON.
    """

    grace_period_days: int = 5
    late_fee_threshold_days: int = 5
    severely_overdue_threshold_days: int = 30
    due_soon_threshold_days: int = 7
    upcoming_threshold_days: int = 7

    def __post_init__(self) -> None:
        for name in (
            "grace_period_days",
            "late_fee_threshold_days",
            "severely_overdue_threshold_days",
            "due_soon_threshold_days",
            "upcoming_threshold_days",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.due_soon_threshold_days < self.upcoming_threshold_days:
            raise ValueError(
                "due_soon_threshold_days must be >= upcoming_threshold_days "
                f"({self.due_soon_threshold_days} < {self.upcoming_threshold_days})"
            )
        if self.severely_overdue_threshold_days <= self.grace_period_days:
            raise ValueError(
                "severely_overdue_threshold_days must exceed grace_period_days"
            )


DEFAULT_THRESHOLDS = StatusThresholds()


@dataclass(frozen=True)
class StatusCalculation:
    """Result of a status derivation."""

    status: PaymentStatus
    days_overdue: int
    days_until_due: int

    @property
    def is_overdue(self) -> bool:
        return self.days_overdue > 0


def utc_date(moment: date | datetime) -> date:
    """UTC calendar date of ``moment``.

    Plain dates are returned as-is; naive datetimes are taken as UTC.
    """
    if isinstance(moment, datetime):
        if moment.tzinfo is None:
            return moment.date()
        return moment.astimezone(timezone.utc).date()
    return moment


def day_counts(due_date: date | datetime, now: date | datetime) -> tuple[int, int]:
    """Return ``(days_until_due, days_overdue)``, both clamped to >= 0."""
    delta = (utc_date(due_date) - utc_date(now)).days
    return max(0, delta), max(0, -delta)


@traced_engine(
    "payment_status", "1.0",
    fingerprint_fields=("due_date", "now", "thresholds"),
)
def calculate_status(
    due_date: date | datetime,
    now: date | datetime,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
) -> StatusCalculation:
    """
    Derive the calendar status of a payment.

    Pure function.  Callers supply ``now`` from an injected Clock.

    Raises:
        StatusDerivationError: If no precedence branch matches.
    """
    days_until_due, days_overdue = day_counts(due_date, now)

    if days_until_due > thresholds.upcoming_threshold_days:
        status = PaymentStatus.UPCOMING
    elif 0 < days_until_due <= thresholds.due_soon_threshold_days:
        status = PaymentStatus.DUE_SOON
    elif days_until_due == 0 and days_overdue == 0:
        status = PaymentStatus.DUE_TODAY
    elif 0 < days_overdue <= thresholds.grace_period_days:
        status = PaymentStatus.GRACE_PERIOD
    elif thresholds.grace_period_days < days_overdue < thresholds.severely_overdue_threshold_days:
        status = PaymentStatus.LATE
    elif days_overdue >= thresholds.severely_overdue_threshold_days:
        status = PaymentStatus.SEVERELY_OVERDUE
    else:
        raise StatusDerivationError(days_until_due, days_overdue)

    return StatusCalculation(
        status=status,
        days_overdue=days_overdue,
        days_until_due=days_until_due,
    )
