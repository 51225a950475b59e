"""
rentals_kernel.domain.payment -- Pure payment value objects.

ZERO I/O.  Frozen dataclasses with str-Enum status fields and tuples for
append-only collections.  The ORM row (``rentals_kernel.models.payment``)
converts to and from these snapshots; engines and services only ever see
the snapshot.

Invariants enforced:
    - Terminal statuses (PAID, COMPLETED, CANCELLED, REFUNDED) are listed
      once in ``TERMINAL_STATUSES`` and every pass checks against it.
    - Monetary values are ``Decimal``; ``round_money`` is the single
      rounding rule (2 places, half rounds up).
    - ``payment_history`` and ``reminders_sent`` are tuples: a new snapshot
      is needed to add an entry, nothing mutates them in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half rounds up."""
    return value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


# =============================================================================
# Enums
# =============================================================================


class PaymentStatus(str, Enum):
    """Payment lifecycle status, in hierarchy order."""

    UPCOMING = "upcoming"
    DUE_SOON = "due_soon"
    DUE_TODAY = "due_today"
    GRACE_PERIOD = "grace_period"
    LATE = "late"
    SEVERELY_OVERDUE = "severely_overdue"
    PARTIAL = "partial"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    FAILED = "failed"
    PENDING = "pending"
    PROCESSING = "processing"
    OVERDUE = "overdue"  # Legacy, treated like LATE


TERMINAL_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.PAID,
    PaymentStatus.COMPLETED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
})

# Statuses derived purely from the calendar by the status calculator
TIME_DERIVED_STATUSES: tuple[PaymentStatus, ...] = (
    PaymentStatus.UPCOMING,
    PaymentStatus.DUE_SOON,
    PaymentStatus.DUE_TODAY,
    PaymentStatus.GRACE_PERIOD,
    PaymentStatus.LATE,
    PaymentStatus.SEVERELY_OVERDUE,
)

OVERDUE_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.LATE,
    PaymentStatus.SEVERELY_OVERDUE,
    PaymentStatus.OVERDUE,
})


class PaymentType(str, Enum):
    """What the payment is for."""

    RENT = "rent"
    SECURITY_DEPOSIT = "security_deposit"
    UTILITY = "utility"
    MAINTENANCE = "maintenance"
    LATE_FEE = "late_fee"
    PET_DEPOSIT = "pet_deposit"
    OTHER = "other"


class EmbeddedFeeType(str, Enum):
    """Fee strategies available to a per-payment late fee config."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"
    DAILY = "daily"


class ReminderType(str, Enum):
    REMINDER = "reminder"
    OVERDUE = "overdue"
    FINAL_NOTICE = "final_notice"


# =============================================================================
# Embedded records
# =============================================================================


@dataclass(frozen=True)
class LateFeeConfig:
    """Per-payment late fee settings copied from the lease.

    When enabled it takes precedence over the configured rule set for this
    payment (see ``rentals_engines.late_fees.rule_from_embedded_config``).
    For ``PERCENTAGE`` the ``fee_amount`` is a percentage of the amount; for
    ``DAILY`` it is the per-day rate.
    """

    enabled: bool = False
    grace_period_days: int = 5
    fee_type: EmbeddedFeeType = EmbeddedFeeType.FIXED
    fee_amount: Decimal = ZERO
    max_fee: Decimal | None = None
    min_fee: Decimal | None = None
    compound_daily: bool = False
    notification_days: tuple[int, ...] = (3, 7, 14)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "grace_period_days": self.grace_period_days,
            "fee_type": self.fee_type.value,
            "fee_amount": str(self.fee_amount),
            "max_fee": str(self.max_fee) if self.max_fee is not None else None,
            "min_fee": str(self.min_fee) if self.min_fee is not None else None,
            "compound_daily": self.compound_daily,
            "notification_days": list(self.notification_days),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LateFeeConfig:
        max_fee = data.get("max_fee")
        min_fee = data.get("min_fee")
        return cls(
            enabled=bool(data.get("enabled", False)),
            grace_period_days=int(data.get("grace_period_days", 5)),
            fee_type=EmbeddedFeeType(data.get("fee_type", "fixed")),
            fee_amount=Decimal(str(data.get("fee_amount", "0"))),
            max_fee=Decimal(str(max_fee)) if max_fee is not None else None,
            min_fee=Decimal(str(min_fee)) if min_fee is not None else None,
            compound_daily=bool(data.get("compound_daily", False)),
            notification_days=tuple(data.get("notification_days", (3, 7, 14))),
        )


@dataclass(frozen=True)
class PaymentHistoryEntry:
    """One received amount. Append-only."""

    amount: Decimal
    method: str
    paid_at: datetime
    reference: str | None = None


@dataclass(frozen=True)
class ReminderRecord:
    """One notification sent for a payment. Append-only."""

    reminder_type: ReminderType
    sent_at: datetime
    channel: str
    template_id: str | None = None


# =============================================================================
# Payment snapshot
# =============================================================================


@dataclass(frozen=True)
class Payment:
    """Immutable snapshot of a payment row at a given ``version``.

    ``version`` is the concurrency token: a write must present the version
    it read, and every accepted write increments it by exactly one.
    """

    payment_id: UUID
    payment_type: PaymentType
    amount: Decimal
    due_date: date | None
    status: PaymentStatus
    version: int = 1
    amount_paid: Decimal = ZERO
    tenant_id: UUID | None = None
    property_id: UUID | None = None
    lease_id: UUID | None = None
    late_fee_applied: Decimal = ZERO
    late_fee_date: datetime | None = None
    late_fee_config: LateFeeConfig | None = None
    paid_date: datetime | None = None
    processor_reference: str | None = None
    parent_payment_id: UUID | None = None
    description: str | None = None
    notes: str | None = None
    deleted_at: datetime | None = None
    last_synced_at: datetime | None = None
    payment_history: tuple[PaymentHistoryEntry, ...] = field(default_factory=tuple)
    reminders_sent: tuple[ReminderRecord, ...] = field(default_factory=tuple)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_late_fee(self) -> bool:
        return self.late_fee_applied > ZERO

    @property
    def balance_due(self) -> Decimal:
        remaining = self.amount - self.amount_paid
        return remaining if remaining > ZERO else ZERO


# Actor recorded on rows written by automated passes
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


@dataclass(frozen=True)
class PaymentEvent:
    """Audit entry for one accepted payment mutation."""

    payment_id: UUID
    version: int
    action: str
    recorded_at: datetime
    actor_id: UUID
    from_status: PaymentStatus | None = None
    to_status: PaymentStatus | None = None
    amount: Decimal | None = None
    detail: dict[str, Any] = field(default_factory=dict)
