"""
rentals_batch.domain.types -- Pure frozen dataclasses for the nightly run.

ZERO I/O.  Frozen dataclasses with tuples for collections and plain
``dict`` for keyed counters, built once at the end of each pass.

Invariants enforced:
    - A run never aborts on an item: failures are ``ItemError`` values in
      ``errors``, not exceptions.
    - ``DailyProcessingResult.overall_success`` is True iff
      ``critical_errors`` is empty.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from rentals_kernel.domain.payment import ZERO, PaymentStatus


# =============================================================================
# Generic batch run
# =============================================================================


@dataclass(frozen=True)
class ItemError:
    """One payment that could not be processed.

    ``error_code`` is the exception's ``code`` when it has one
    (e.g. OPTIMISTIC_LOCK_CONFLICT), otherwise UNHANDLED_EXCEPTION.
    """

    payment_id: str
    error_code: str
    message: str


@dataclass(frozen=True)
class BatchRunResult:
    """Result of ``BatchProcessor.run``.

    ``item_results`` holds ``(payment_id, value)`` for every item whose
    chunk committed, in processing order.
    """

    total_items: int
    succeeded: int
    failed: int
    chunks_committed: int = 0
    chunks_failed: int = 0
    item_results: tuple[tuple[UUID, Any], ...] = ()
    errors: tuple[ItemError, ...] = ()
    duration_ms: int = 0


# =============================================================================
# Status pass
# =============================================================================


@dataclass(frozen=True)
class StatusChange:
    payment_id: str
    from_status: PaymentStatus
    to_status: PaymentStatus
    late_fee_charged: Decimal = ZERO


@dataclass(frozen=True)
class StatusUpdateResult:
    processed: int
    changed: int
    changes: tuple[StatusChange, ...] = ()
    errors: tuple[ItemError, ...] = ()


# =============================================================================
# Late-fee pass
# =============================================================================


@dataclass(frozen=True)
class LateFeeApplication:
    """One fee charged (or, in a dry run, that would be charged)."""

    payment_id: str
    rule_id: str
    amount: Decimal
    days_overdue: int
    breakdown: dict[str, Any] = field(default_factory=dict)
    child_payment_id: str | None = None


@dataclass(frozen=True)
class ProcessingResult:
    """Late-fee pass outcome.

    ``by_rule`` and ``by_days_overdue`` summarize ``applications``:
    rule_id -> (count, total) and days overdue -> count.
    """

    processed: int
    fees_applied: int
    total_fees: Decimal
    dry_run: bool = False
    applications: tuple[LateFeeApplication, ...] = ()
    errors: tuple[ItemError, ...] = ()
    by_rule: dict[str, tuple[int, Decimal]] = field(default_factory=dict)
    by_days_overdue: dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ReversalResult:
    success: bool
    message: str
    payment_id: str
    reversed_amount: Decimal = ZERO
    cancelled_fee_payment_ids: tuple[str, ...] = ()


# =============================================================================
# Communication pass
# =============================================================================


@dataclass(frozen=True)
class NotificationResult:
    payment_id: str
    reminder_type: str
    template_id: str
    channels: tuple[str, ...]
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class CommunicationResult:
    processed: int
    sent: int
    failed: int
    notifications: tuple[NotificationResult, ...] = ()
    errors: tuple[ItemError, ...] = ()


# =============================================================================
# Daily run
# =============================================================================


@dataclass(frozen=True)
class StageError:
    stage: str
    error_code: str
    message: str


@dataclass(frozen=True)
class DailyProcessingResult:
    """Aggregate report of one ``run_daily_processing`` call.

    A stage that failed as a whole leaves its result as None and adds a
    ``StageError`` to ``critical_errors``.
    """

    run_id: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    status_update: StatusUpdateResult | None = None
    late_fees: ProcessingResult | None = None
    communication: CommunicationResult | None = None
    critical_errors: tuple[StageError, ...] = ()

    @property
    def overall_success(self) -> bool:
        return not self.critical_errors

    @property
    def item_error_count(self) -> int:
        return sum(
            len(stage.errors)
            for stage in (self.status_update, self.late_fees, self.communication)
            if stage is not None
        )
