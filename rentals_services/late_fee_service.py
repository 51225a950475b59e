"""
rentals_services.late_fee_service -- Late-fee pass and late-fee reversal.

Responsibility:
    Charges late fees on overdue payments under an ordered rule table,
    creates the linked late-fee payment for each charge, and reverses a
    charge on request.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes the late-fee engine (rentals_engines.late_fees), PaymentStore
    / PaymentMutator (rentals_kernel) and BatchProcessor (rentals_batch).

Invariants enforced:
    - First-match rule selection; a payment's own enabled late fee config
      is evaluated before the configured rules.
    - Apply-once rules charge a payment at most once, so running the pass
      twice on an unchanged payment charges once.
    - Dry runs compute and report every fee but perform zero writes: no
      mutator call is made and every chunk is rolled back.
    - Reversal is one transaction: every open late-fee child is cancelled
      and the origin's fee fields are reset, or nothing changes.

Failure modes:
    - UnknownRuleError: ``rule_ids`` names a rule that is not configured.
      Raised before any payment is read.
    - Per-item errors (OptimisticLockError, TerminalPaymentError, ...) are
      collected in ``ProcessingResult.errors``.
    - ``reverse_late_fee`` reports domain errors in the returned
      ``ReversalResult`` rather than raising.

Audit relevance:
    ``late_fee_applied`` events carry the rule id, days overdue and the
    full FeeBreakdown; ``late_fee_reset`` events carry the reversal reason
    and the reversed amount.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from rentals_kernel.db.engine import session_scope
from rentals_kernel.domain.clock import Clock, SystemClock
from rentals_kernel.domain.payment import (
    SYSTEM_ACTOR_ID,
    ZERO,
    PaymentStatus,
    PaymentType,
    round_money,
)
from rentals_kernel.exceptions import NoLateFeeToReverseError, RentalsError
from rentals_kernel.logging_config import get_logger
from rentals_kernel.services.payment_mutator import (
    FeeMutation,
    PaymentMutator,
    StatusMutation,
)
from rentals_kernel.services.payment_store import PaymentFilter, PaymentStore

from rentals_engines.chargeable import PaymentChargeable
from rentals_engines.late_fees import (
    LateFeeRule,
    build_late_fee_payment,
    calculate_late_fee,
    match_rule,
    rules_for_payment,
    select_rules,
)
from rentals_engines.status import day_counts
from rentals_engines.transitions import (
    DEFAULT_TRANSITION_TABLE,
    TransitionContext,
    TransitionTable,
)

from rentals_batch.domain.types import (
    LateFeeApplication,
    ProcessingResult,
    ReversalResult,
)
from rentals_batch.services.processor import DEFAULT_CHUNK_SIZE, BatchProcessor

logger = get_logger("services.late_fee")

S = PaymentStatus

# Payments in flight with a processor, or failed, are not charged.
LATE_FEE_CANDIDATE_STATUSES: tuple[PaymentStatus, ...] = (
    S.PENDING,
    S.UPCOMING,
    S.DUE_SOON,
    S.DUE_TODAY,
    S.GRACE_PERIOD,
    S.LATE,
    S.SEVERELY_OVERDUE,
    S.OVERDUE,
    S.PARTIAL,
)

# Late-fee payments never accrue late fees of their own.
LATE_FEE_CHARGEABLE_TYPES: tuple[PaymentType, ...] = tuple(
    t for t in PaymentType if t is not PaymentType.LATE_FEE
)


class LateFeeService:
    """
    Late-fee pass over overdue payments.

    Contract:
        ``rules`` is the configured table in priority order.  It is held
        as a tuple and never mutated; a call may pass a different table
        or a subset by id.
    Non-goals:
        - Does NOT change payment status; the status pass does that.
        - Does NOT notify tenants; the communication pass does that.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        rules: Sequence[LateFeeRule] = (),
        clock: Clock | None = None,
        transition_table: TransitionTable = DEFAULT_TRANSITION_TABLE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        actor_id: UUID | None = None,
    ):
        self._session_factory = session_factory
        self._rules = tuple(rules)
        self._clock = clock or SystemClock()
        self._table = transition_table
        self._actor_id = actor_id or SYSTEM_ACTOR_ID
        self._processor = BatchProcessor(session_factory, self._clock, chunk_size)

    @property
    def rules(self) -> tuple[LateFeeRule, ...]:
        return self._rules

    def _resolve_rules(
        self,
        rules: Sequence[LateFeeRule] | None,
        rule_ids: Sequence[str] | None,
    ) -> tuple[LateFeeRule, ...]:
        table = tuple(rules) if rules is not None else self._rules
        if rule_ids is not None:
            table = select_rules(table, rule_ids)
        return table

    # -------------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------------

    def process_late_fees(
        self,
        rules: Sequence[LateFeeRule] | None = None,
        dry_run: bool = False,
        rule_ids: Sequence[str] | None = None,
    ) -> ProcessingResult:
        """Charge late fees on every eligible overdue payment.

        Raises:
            UnknownRuleError: If ``rule_ids`` names an unconfigured rule.
        """
        table = self._resolve_rules(rules, rule_ids)
        now = self._clock.now()
        today = self._clock.today_utc()

        def select_ids(session: Session) -> list[UUID]:
            return PaymentStore(session).find_ids(PaymentFilter(
                statuses=LATE_FEE_CANDIDATE_STATUSES,
                payment_types=LATE_FEE_CHARGEABLE_TYPES,
                due_on_or_before=today - timedelta(days=1),
                eligible_only=True,
            ))

        def process_item(session: Session, payment_id: UUID) -> LateFeeApplication | None:
            return self._charge(session, payment_id, table, today, dry_run)

        logger.info(
            "late_fee_pass_started",
            extra={
                "rule_count": len(table),
                "dry_run": dry_run,
                "as_of": now,
            },
        )
        run = self._processor.run(select_ids, process_item, dry_run=dry_run)
        applications = tuple(app for _, app in run.item_results if app is not None)

        by_rule: dict[str, tuple[int, Decimal]] = {}
        by_days: dict[int, int] = {}
        for app in applications:
            count, total = by_rule.get(app.rule_id, (0, ZERO))
            by_rule[app.rule_id] = (count + 1, total + app.amount)
            by_days[app.days_overdue] = by_days.get(app.days_overdue, 0) + 1

        total_fees = sum((app.amount for app in applications), ZERO)
        logger.info(
            "late_fee_pass_completed",
            extra={
                "processed": run.total_items,
                "fees_applied": len(applications),
                "total_fees": total_fees,
                "errors": len(run.errors),
                "dry_run": dry_run,
            },
        )
        return ProcessingResult(
            processed=run.total_items,
            fees_applied=len(applications),
            total_fees=total_fees,
            dry_run=dry_run,
            applications=applications,
            errors=run.errors,
            by_rule=by_rule,
            by_days_overdue=by_days,
        )

    def process_payment_late_fee(
        self,
        payment_id: UUID,
        rules: Sequence[LateFeeRule] | None = None,
        dry_run: bool = False,
    ) -> LateFeeApplication | None:
        """Evaluate one payment; commits unless ``dry_run``.

        Raises:
            PaymentNotFoundError, OptimisticLockError, TerminalPaymentError.
        """
        table = self._resolve_rules(rules, None)
        today = self._clock.today_utc()
        if dry_run:
            session = self._session_factory()
            try:
                return self._charge(session, payment_id, table, today, dry_run=True)
            finally:
                session.rollback()
                session.close()
        with session_scope(self._session_factory) as session:
            return self._charge(session, payment_id, table, today, dry_run=False)

    def _charge(
        self,
        session: Session,
        payment_id: UUID,
        rules: tuple[LateFeeRule, ...],
        today: date,
        dry_run: bool,
    ) -> LateFeeApplication | None:
        store = PaymentStore(session)
        payment = store.get(payment_id)
        if payment.is_terminal or payment.due_date is None:
            return None
        if payment.payment_type is PaymentType.LATE_FEE:
            return None

        _, days_overdue = day_counts(payment.due_date, today)
        chargeable = PaymentChargeable(payment)
        rule = match_rule(chargeable, rules_for_payment(payment, rules), days_overdue)
        if rule is None:
            return None
        calc = calculate_late_fee(chargeable, rule, days_overdue, payment.late_fee_applied)
        if calc is None:
            return None

        if dry_run:
            logger.info(
                "late_fee_previewed",
                extra={
                    "payment_id": str(payment_id),
                    "rule_id": calc.rule_id,
                    "amount": calc.amount,
                    "days_overdue": days_overdue,
                },
            )
            return LateFeeApplication(
                payment_id=str(payment_id),
                rule_id=calc.rule_id,
                amount=calc.amount,
                days_overdue=days_overdue,
                breakdown=calc.breakdown.to_dict(),
            )

        mutator = PaymentMutator(store, self._clock, self._actor_id)
        child = build_late_fee_payment(payment, calc.amount, calc.reason, today)
        mutator.apply_fee(
            payment_id,
            payment.version,
            FeeMutation(
                total_applied=calc.total_fee,
                charged=calc.amount,
                rule_id=calc.rule_id,
                days_overdue=days_overdue,
                breakdown=calc.breakdown.to_dict(),
            ),
        )
        store.create(child, actor_id=self._actor_id)

        logger.info(
            "late_fee_applied",
            extra={
                "payment_id": str(payment_id),
                "rule_id": calc.rule_id,
                "amount": calc.amount,
                "total_fee": calc.total_fee,
                "days_overdue": days_overdue,
                "child_payment_id": str(child.payment_id),
            },
        )
        return LateFeeApplication(
            payment_id=str(payment_id),
            rule_id=calc.rule_id,
            amount=calc.amount,
            days_overdue=days_overdue,
            breakdown=calc.breakdown.to_dict(),
            child_payment_id=str(child.payment_id),
        )

    # -------------------------------------------------------------------------
    # Reversal
    # -------------------------------------------------------------------------

    def reverse_late_fee(
        self,
        payment_id: UUID,
        reason: str,
        reversed_by: UUID | None = None,
    ) -> ReversalResult:
        """Cancel the late-fee payments of ``payment_id`` and reset its fee.

        All-or-nothing: on any domain error the transaction is rolled back
        and ``success`` is False with the error message.
        """
        actor_id = reversed_by or self._actor_id
        try:
            with session_scope(self._session_factory) as session:
                result = self._reverse(session, payment_id, reason, actor_id)
        except RentalsError as exc:
            logger.warning(
                "late_fee_reversal_failed",
                extra={
                    "payment_id": str(payment_id),
                    "error_code": exc.code,
                    "error": str(exc),
                },
            )
            return ReversalResult(
                success=False,
                message=str(exc),
                payment_id=str(payment_id),
            )

        logger.info(
            "late_fee_reversed",
            extra={
                "payment_id": str(payment_id),
                "reversed_amount": result.reversed_amount,
                "cancelled_fee_payments": list(result.cancelled_fee_payment_ids),
                "actor_id": str(actor_id),
            },
        )
        return result

    def _reverse(
        self,
        session: Session,
        payment_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> ReversalResult:
        store = PaymentStore(session)
        mutator = PaymentMutator(store, self._clock, actor_id)
        payment = store.get(payment_id)
        if not payment.has_late_fee:
            raise NoLateFeeToReverseError(str(payment_id))

        ctx = TransitionContext(now=self._clock.now())
        cancelled: list[str] = []
        children = store.find(PaymentFilter(
            parent_payment_id=payment_id,
            payment_types=(PaymentType.LATE_FEE,),
        ))
        for child in children:
            if child.status == S.CANCELLED:
                continue
            outcome = self._table.apply_transition(child, S.CANCELLED, ctx)
            mutator.update_status(
                child.payment_id,
                child.version,
                StatusMutation(
                    from_status=outcome.from_status,
                    to_status=outcome.to_status,
                    patch=outcome.patch,
                    reason=reason,
                    detail={"rule": outcome.rule_name, "reversal_of": str(payment_id)},
                ),
                automated=False,
            )
            cancelled.append(str(child.payment_id))

        reversed_amount = round_money(payment.late_fee_applied)
        mutator.reset_fee(
            payment_id,
            payment.version,
            reason=reason,
            previous_fee=reversed_amount,
        )
        return ReversalResult(
            success=True,
            message=f"Late fee of {reversed_amount} reversed: {reason}",
            payment_id=str(payment_id),
            reversed_amount=reversed_amount,
            cancelled_fee_payment_ids=tuple(cancelled),
        )
