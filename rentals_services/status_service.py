"""
rentals_services.status_service -- Payment status pass and manual transitions.

Responsibility:
    Moves payments along the calendar ladder (UPCOMING -> ... ->
    SEVERELY_OVERDUE) once per night, applies manual transitions
    (cancel, refund, retry), and reports status statistics.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes StatusCalculator and TransitionTable (rentals_engines),
    PaymentStore / PaymentMutator (rentals_kernel) and BatchProcessor
    (rentals_batch).

Invariants enforced:
    - Terminal payments are never selected and never written by the pass;
      the mutator re-checks terminal status inside the UPDATE.
    - Every status change goes through ``TransitionTable.apply_transition``
      and ``PaymentMutator.update_status``; side-effect patches are written
      in the same versioned update as the status.
    - A payment that entered LATE with an embedded late fee gets its fee
      and its late-fee child payment in the same SAVEPOINT.

Failure modes:
    - Per-item (collected in ``StatusUpdateResult.errors``):
      OptimisticLockError, InvalidTransitionError, PaymentNotFoundError.
    - ``update_payment_status`` raises them to the caller instead.

Audit relevance:
    Each change writes a ``status_changed`` event with from/to status, the
    rule name and any late-fee detail.

Usage:
    service = PaymentStatusService(session_factory, clock=clock)
    result = service.process_automated_transitions()
    result.changed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from rentals_kernel.db.engine import session_scope
from rentals_kernel.domain.clock import Clock, SystemClock
from rentals_kernel.domain.payment import (
    SYSTEM_ACTOR_ID,
    TERMINAL_STATUSES,
    ZERO,
    Payment,
    PaymentStatus,
)
from rentals_kernel.logging_config import get_logger
from rentals_kernel.services.payment_mutator import PaymentMutator, StatusMutation
from rentals_kernel.services.payment_store import PaymentFilter, PaymentStore

from rentals_engines.status import DEFAULT_THRESHOLDS, StatusThresholds
from rentals_engines.transitions import (
    DEFAULT_TRANSITION_TABLE,
    TransitionContext,
    TransitionOutcome,
    TransitionTable,
)

from rentals_batch.domain.types import StatusChange, StatusUpdateResult
from rentals_batch.services.processor import DEFAULT_CHUNK_SIZE, BatchProcessor

logger = get_logger("services.status")

S = PaymentStatus

# Statuses the nightly pass re-derives from the calendar.  PARTIAL,
# PROCESSING and FAILED move only on payment events.
CALENDAR_TRACKED_STATUSES: tuple[PaymentStatus, ...] = (
    S.PENDING,
    S.UPCOMING,
    S.DUE_SOON,
    S.DUE_TODAY,
    S.GRACE_PERIOD,
    S.LATE,
    S.SEVERELY_OVERDUE,
    S.OVERDUE,
)

STATUS_CATEGORIES: dict[str, frozenset[PaymentStatus]] = {
    "upcoming": frozenset({S.UPCOMING, S.DUE_SOON, S.DUE_TODAY}),
    "overdue": frozenset({S.GRACE_PERIOD, S.LATE, S.SEVERELY_OVERDUE, S.OVERDUE}),
    "in_progress": frozenset({S.PENDING, S.PROCESSING, S.PARTIAL, S.FAILED}),
    "settled": TERMINAL_STATUSES,
}


@dataclass(frozen=True)
class StatusStatistics:
    """Counts and sums by status and by category (non-deleted payments)."""

    total_count: int
    total_amount: Decimal
    total_paid: Decimal
    total_late_fees: Decimal
    by_status: dict[PaymentStatus, int] = field(default_factory=dict)
    by_category: dict[str, int] = field(default_factory=dict)
    outstanding_by_category: dict[str, Decimal] = field(default_factory=dict)


class PaymentStatusService:
    """
    Status pass and manual transitions.

    Contract:
        ``process_automated_transitions`` runs the calendar pass over all
        eligible payments; ``update_payment_status`` applies one requested
        (or derived) transition in its own transaction.
    Guarantees:
        - Rule table and thresholds are fixed for the lifetime of the
          service; one ``now`` is read per pass.
    Non-goals:
        - Does NOT compute rule-table late fees; that is LateFeeService.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
        transition_table: TransitionTable = DEFAULT_TRANSITION_TABLE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        actor_id: UUID | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._thresholds = thresholds
        self._table = transition_table
        self._actor_id = actor_id or SYSTEM_ACTOR_ID
        self._processor = BatchProcessor(session_factory, self._clock, chunk_size)

    def _context(self) -> TransitionContext:
        return TransitionContext(now=self._clock.now(), thresholds=self._thresholds)

    # -------------------------------------------------------------------------
    # Single payment
    # -------------------------------------------------------------------------

    def update_payment_status(
        self,
        payment_id: UUID,
        to_status: PaymentStatus | None = None,
        reason: str | None = None,
        automated: bool = False,
    ) -> TransitionOutcome:
        """Apply one transition and commit it.

        With ``to_status`` None the calendar-derived status is used.

        Raises:
            PaymentNotFoundError, InvalidTransitionError,
            OptimisticLockError, TerminalPaymentError.
        """
        ctx = self._context()
        with session_scope(self._session_factory) as session:
            store = PaymentStore(session)
            payment = store.get(payment_id)
            target = to_status or self._derived_status(payment, ctx)
            if target is None:
                raise ValueError(
                    f"Payment {payment_id} has no due date; a target status is required"
                )
            return self._transition(session, payment, target, ctx, reason, automated)

    def _derived_status(
        self,
        payment: Payment,
        ctx: TransitionContext,
    ) -> PaymentStatus | None:
        calc = ctx.calculation(payment)
        return calc.status if calc is not None else None

    def _transition(
        self,
        session: Session,
        payment: Payment,
        target: PaymentStatus,
        ctx: TransitionContext,
        reason: str | None,
        automated: bool,
    ) -> TransitionOutcome:
        outcome = self._table.apply_transition(payment, target, ctx)
        if not outcome.changed:
            return outcome

        store = PaymentStore(session)
        mutator = PaymentMutator(store, self._clock, self._actor_id)
        detail = dict(outcome.detail)
        detail["rule"] = outcome.rule_name
        mutator.update_status(
            payment.payment_id,
            payment.version,
            StatusMutation(
                from_status=outcome.from_status,
                to_status=outcome.to_status,
                patch=outcome.patch,
                reason=reason,
                detail=detail,
            ),
            automated=automated,
        )
        for child in outcome.child_payments:
            store.create(child, actor_id=self._actor_id)

        logger.info(
            "status_transition_applied",
            extra={
                "payment_id": str(payment.payment_id),
                "from_status": outcome.from_status.value,
                "to_status": outcome.to_status.value,
                "rule": outcome.rule_name,
                "side_effects": list(outcome.side_effects_run),
                "child_payments": len(outcome.child_payments),
            },
        )
        return outcome

    # -------------------------------------------------------------------------
    # Nightly pass
    # -------------------------------------------------------------------------

    def process_automated_transitions(self) -> StatusUpdateResult:
        """Re-derive the status of every eligible calendar-tracked payment."""
        ctx = self._context()

        def select_ids(session: Session) -> list[UUID]:
            return PaymentStore(session).find_ids(PaymentFilter(
                statuses=CALENDAR_TRACKED_STATUSES,
                eligible_only=True,
            ))

        def process_item(session: Session, payment_id: UUID) -> StatusChange | None:
            payment = PaymentStore(session).get(payment_id)
            if payment.is_terminal:
                return None
            target = self._derived_status(payment, ctx)
            if target is None or target == payment.status:
                return None
            outcome = self._transition(
                session, payment, target, ctx,
                reason="automated_status_update", automated=True,
            )
            charged = sum((c.amount for c in outcome.child_payments), ZERO)
            return StatusChange(
                payment_id=str(payment_id),
                from_status=outcome.from_status,
                to_status=outcome.to_status,
                late_fee_charged=charged,
            )

        run = self._processor.run(select_ids, process_item)
        changes = tuple(change for _, change in run.item_results if change is not None)
        logger.info(
            "status_pass_completed",
            extra={
                "processed": run.total_items,
                "changed": len(changes),
                "errors": len(run.errors),
            },
        )
        return StatusUpdateResult(
            processed=run.total_items,
            changed=len(changes),
            changes=changes,
            errors=run.errors,
        )

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def status_statistics(self) -> StatusStatistics:
        with session_scope(self._session_factory) as session:
            rows = PaymentStore(session).summarize_by_status()

        by_status = {row.status: row.count for row in rows}
        by_category: dict[str, int] = {}
        outstanding: dict[str, Decimal] = {}
        for category, statuses in STATUS_CATEGORIES.items():
            members = [row for row in rows if row.status in statuses]
            by_category[category] = sum(row.count for row in members)
            outstanding[category] = sum(
                (row.total_amount - row.total_paid for row in members), ZERO,
            )

        return StatusStatistics(
            total_count=sum(row.count for row in rows),
            total_amount=sum((row.total_amount for row in rows), ZERO),
            total_paid=sum((row.total_paid for row in rows), ZERO),
            total_late_fees=sum((row.total_late_fees for row in rows), ZERO),
            by_status=by_status,
            by_category=by_category,
            outstanding_by_category=outstanding,
        )
