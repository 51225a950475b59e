"""
Module: rentals_engines.transitions
Responsibility:
    The payment status transition table: which status changes are legal,
    under which conditions, and what side effects (field patches, late-fee
    child payments) each one produces.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Produces a ``TransitionOutcome`` (patch + child payments); the
    PaymentMutator is the only thing that writes it.

Invariants enforced:
    - The table is an ordered tuple; the FIRST rule whose from-set holds
      the current status, whose target matches, and whose condition holds
      is the one applied.
    - Terminal statuses have no outbound rule except PAID/COMPLETED ->
      REFUNDED, so a paid payment can never be moved back to LATE.
    - Requesting a change no rule allows raises InvalidTransitionError;
      requesting the current status is a no-op.
    - Side effects run before the status is set and only return data.

Failure modes:
    - InvalidTransitionError: no matching rule and target != current.
    - ValueError: a condition needs a TransitionContext and none was given.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Mapping, Sequence

from rentals_kernel.domain.payment import (
    TIME_DERIVED_STATUSES,
    ZERO,
    Payment,
    PaymentStatus,
)
from rentals_kernel.exceptions import InvalidTransitionError
from rentals_engines.chargeable import PaymentChargeable
from rentals_engines.late_fees import (
    build_late_fee_payment,
    calculate_late_fee,
    match_rule,
    rule_from_embedded_config,
)
from rentals_engines.status import (
    DEFAULT_THRESHOLDS,
    StatusCalculation,
    StatusThresholds,
    calculate_status,
    utc_date,
)

S = PaymentStatus


@dataclass(frozen=True)
class TransitionContext:
    """Clock reading and thresholds a transition is evaluated against."""

    now: datetime
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS

    @property
    def today(self) -> date:
        return utc_date(self.now)

    def calculation(self, payment: Payment) -> StatusCalculation | None:
        if payment.due_date is None:
            return None
        return calculate_status(payment.due_date, self.now, self.thresholds)


@dataclass(frozen=True)
class TransitionEffect:
    """Data a side effect produces.  Empty means "nothing to do"."""

    patch: Mapping[str, Any] = field(default_factory=dict)
    child_payments: tuple[Payment, ...] = ()
    detail: Mapping[str, Any] = field(default_factory=dict)


Condition = Callable[[Payment, TransitionContext], bool]
SideEffect = Callable[[Payment, TransitionContext], TransitionEffect]


@dataclass(frozen=True)
class TransitionRule:
    name: str
    from_statuses: frozenset[PaymentStatus]
    to_status: PaymentStatus
    condition: Condition | None = None
    side_effect: SideEffect | None = None


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of ``apply_transition``.

    ``patch`` excludes ``status``; the caller writes both together.
    """

    changed: bool
    from_status: PaymentStatus
    to_status: PaymentStatus
    rule_name: str | None = None
    side_effects_run: tuple[str, ...] = ()
    patch: Mapping[str, Any] = field(default_factory=dict)
    child_payments: tuple[Payment, ...] = ()
    detail: Mapping[str, Any] = field(default_factory=dict)


# =============================================================================
# Conditions
# =============================================================================


def _derives(target: PaymentStatus) -> Condition:
    def condition(payment: Payment, ctx: TransitionContext) -> bool:
        calc = ctx.calculation(payment)
        return calc is not None and calc.status == target

    condition.__name__ = f"derives_{target.value}"
    return condition


def _has_processor_reference(payment: Payment, ctx: TransitionContext) -> bool:
    return bool(payment.processor_reference)


def _partially_paid(payment: Payment, ctx: TransitionContext) -> bool:
    return 0 < payment.amount_paid < payment.amount


def _fully_paid(payment: Payment, ctx: TransitionContext) -> bool:
    return payment.amount_paid >= payment.amount


# =============================================================================
# Side effects
# =============================================================================


def mark_paid(payment: Payment, ctx: TransitionContext) -> TransitionEffect:
    amount_paid = max(payment.amount_paid, payment.amount)
    return TransitionEffect(patch={"amount_paid": amount_paid, "paid_date": ctx.now})


def mark_refunded(payment: Payment, ctx: TransitionContext) -> TransitionEffect:
    return TransitionEffect(patch={"amount_paid": ZERO})


def charge_embedded_late_fee(payment: Payment, ctx: TransitionContext) -> TransitionEffect:
    """Charge the payment's own late fee config on entering LATE.

    No-op when the payment has no enabled config, already carries a fee,
    or is below the late-fee threshold or inside the config's grace period.
    """
    if payment.has_late_fee or payment.late_fee_config is None:
        return TransitionEffect()
    rule = rule_from_embedded_config(payment.late_fee_config)
    calc = ctx.calculation(payment)
    if rule is None or calc is None:
        return TransitionEffect()
    if calc.days_overdue < ctx.thresholds.late_fee_threshold_days:
        return TransitionEffect()

    chargeable = PaymentChargeable(payment)
    if match_rule(chargeable, (rule,), calc.days_overdue) is None:
        return TransitionEffect()
    fee = calculate_late_fee(chargeable, rule, calc.days_overdue)
    if fee is None:
        return TransitionEffect()

    child = build_late_fee_payment(payment, fee.amount, fee.reason, ctx.today)
    return TransitionEffect(
        patch={"late_fee_applied": fee.total_fee, "late_fee_date": ctx.now},
        child_payments=(child,),
        detail={
            "late_fee": {
                "rule_id": fee.rule_id,
                "amount": str(fee.amount),
                "days_overdue": fee.days_overdue,
                "breakdown": fee.breakdown.to_dict(),
                "child_payment_id": str(child.payment_id),
            }
        },
    )


# =============================================================================
# Default table
# =============================================================================

UNPAID_STATUSES: frozenset[PaymentStatus] = frozenset({
    S.UPCOMING, S.DUE_SOON, S.DUE_TODAY, S.GRACE_PERIOD, S.LATE,
    S.SEVERELY_OVERDUE, S.PENDING, S.OVERDUE,
})

CANCELLABLE_STATUSES: frozenset[PaymentStatus] = UNPAID_STATUSES | {
    S.PARTIAL, S.PROCESSING,
}

_CHARGES_ON_ENTRY = {S.LATE, S.SEVERELY_OVERDUE}


def _catch_up_rules() -> list[TransitionRule]:
    """Forward moves for payments that skipped one or more nightly passes."""
    rules = []
    for index, target in enumerate(TIME_DERIVED_STATUSES):
        earlier = frozenset({S.PENDING, *TIME_DERIVED_STATUSES[:index]})
        rules.append(TransitionRule(
            name=f"catch_up_to_{target.value}",
            from_statuses=earlier,
            to_status=target,
            condition=_derives(target),
            side_effect=charge_embedded_late_fee if target in _CHARGES_ON_ENTRY else None,
        ))
    return rules


DEFAULT_RULES: tuple[TransitionRule, ...] = (
    TransitionRule("upcoming_to_due_soon", frozenset({S.UPCOMING}), S.DUE_SOON,
                   _derives(S.DUE_SOON)),
    TransitionRule("due_soon_to_due_today", frozenset({S.DUE_SOON}), S.DUE_TODAY,
                   _derives(S.DUE_TODAY)),
    TransitionRule("due_today_to_grace_period", frozenset({S.DUE_TODAY}), S.GRACE_PERIOD,
                   _derives(S.GRACE_PERIOD)),
    TransitionRule("grace_period_to_late", frozenset({S.GRACE_PERIOD}), S.LATE,
                   _derives(S.LATE), charge_embedded_late_fee),
    TransitionRule("late_to_severely_overdue", frozenset({S.LATE, S.OVERDUE}),
                   S.SEVERELY_OVERDUE, _derives(S.SEVERELY_OVERDUE)),
    TransitionRule("legacy_overdue_to_grace_period", frozenset({S.OVERDUE}), S.GRACE_PERIOD,
                   _derives(S.GRACE_PERIOD)),
    TransitionRule("legacy_overdue_to_late", frozenset({S.OVERDUE}), S.LATE,
                   _derives(S.LATE)),
    *_catch_up_rules(),
    TransitionRule("pending_to_processing", frozenset({S.PENDING}), S.PROCESSING,
                   _has_processor_reference),
    TransitionRule("processing_to_paid", frozenset({S.PROCESSING}), S.PAID,
                   side_effect=mark_paid),
    TransitionRule("unpaid_to_partial", UNPAID_STATUSES, S.PARTIAL, _partially_paid),
    TransitionRule("partial_to_paid", frozenset({S.PARTIAL}), S.PAID,
                   _fully_paid, mark_paid),
    TransitionRule("unpaid_to_paid", UNPAID_STATUSES, S.PAID, side_effect=mark_paid),
    TransitionRule("cancel", CANCELLABLE_STATUSES, S.CANCELLED),
    TransitionRule("refund", frozenset({S.PAID, S.COMPLETED}), S.REFUNDED,
                   side_effect=mark_refunded),
    TransitionRule("retry_failed", frozenset({S.FAILED}), S.PENDING),
)


# =============================================================================
# Table
# =============================================================================


class TransitionTable:
    """
    Ordered, read-only set of transition rules.

    Contract:
        ``find`` / ``is_valid_transition`` / ``apply_transition`` never
        mutate the payment or the table.
    Non-goals:
        - Does NOT persist anything; see PaymentMutator.
    """

    def __init__(self, rules: Sequence[TransitionRule] = DEFAULT_RULES):
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[TransitionRule, ...]:
        return self._rules

    def find(
        self,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
        payment: Payment | None = None,
        ctx: TransitionContext | None = None,
    ) -> TransitionRule | None:
        """First rule for ``from_status -> to_status``.

        Conditions are evaluated only when ``payment`` is given.
        """
        for rule in self._rules:
            if from_status not in rule.from_statuses or rule.to_status != to_status:
                continue
            if payment is not None and rule.condition is not None:
                if ctx is None:
                    raise ValueError(
                        f"Transition rule {rule.name} has a condition; "
                        "a TransitionContext is required"
                    )
                if not rule.condition(payment, ctx):
                    continue
            return rule
        return None

    def is_valid_transition(
        self,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
        payment: Payment | None = None,
        ctx: TransitionContext | None = None,
    ) -> bool:
        return self.find(from_status, to_status, payment, ctx) is not None

    def apply_transition(
        self,
        payment: Payment,
        to_status: PaymentStatus,
        ctx: TransitionContext,
    ) -> TransitionOutcome:
        """Resolve the rule for ``payment.status -> to_status`` and run its side effect.

        Raises:
            InvalidTransitionError: If no rule allows the change.
        """
        if to_status == payment.status:
            return TransitionOutcome(
                changed=False,
                from_status=payment.status,
                to_status=to_status,
            )

        rule = self.find(payment.status, to_status, payment, ctx)
        if rule is None:
            raise InvalidTransitionError(
                str(payment.payment_id), payment.status.value, to_status.value,
            )

        effect = rule.side_effect(payment, ctx) if rule.side_effect else TransitionEffect()
        side_effects_run = (rule.side_effect.__name__,) if rule.side_effect else ()
        return TransitionOutcome(
            changed=True,
            from_status=payment.status,
            to_status=to_status,
            rule_name=rule.name,
            side_effects_run=side_effects_run,
            patch=dict(effect.patch),
            child_payments=effect.child_payments,
            detail=dict(effect.detail),
        )


DEFAULT_TRANSITION_TABLE = TransitionTable()


def is_valid_transition(
    from_status: PaymentStatus,
    to_status: PaymentStatus,
    payment: Payment | None = None,
    ctx: TransitionContext | None = None,
) -> bool:
    return DEFAULT_TRANSITION_TABLE.is_valid_transition(from_status, to_status, payment, ctx)


def apply_transition(
    payment: Payment,
    to_status: PaymentStatus,
    ctx: TransitionContext,
) -> TransitionOutcome:
    return DEFAULT_TRANSITION_TABLE.apply_transition(payment, to_status, ctx)
