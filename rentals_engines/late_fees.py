"""
Module: rentals_engines.late_fees
Responsibility:
    Late-fee rule definitions, first-match rule selection, and fee
    computation for fixed, percentage, tiered and daily (optionally
    compounding) strategies.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Works on the ``Chargeable`` protocol, so payments and invoices share
    one calculator.

Invariants enforced:
    - Rule order is priority: ``match_rule`` returns the FIRST enabled rule
      whose payment types and amount conditions match and whose grace
      period has elapsed.  Rules are never merged.
    - Clamp order is fixed: min floor, then max cap, then quantize to
      0.01 with ROUND_HALF_UP.  ``min_amount <= fee <= max_amount`` when
      both are configured.
    - Tiered fees use the tier with the largest ``days_overdue`` not above
      the actual days overdue (escalating, not cumulative).
    - Daily compounding adds ``daily_fees * COMPOUND_FACTOR`` as a separate
      breakdown component.
    - Apply-once rules never charge a payment that already carries a fee.
      Incremental rules charge only the delta above what is applied.

Failure modes:
    - MalformedRuleError at rule construction (negative amounts, empty
      tiers, ambiguous tiers, min above max).
    - UnknownRuleError from ``select_rules`` for an id not in the table.

Audit relevance:
    ``FeeBreakdown`` keeps every intermediate value so the recorded fee can
    be reconstructed from the audit event alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Sequence
from uuid import uuid4

from rentals_kernel.domain.payment import (
    ZERO,
    EmbeddedFeeType,
    LateFeeConfig,
    Payment,
    PaymentStatus,
    PaymentType,
    round_money,
)
from rentals_kernel.exceptions import MalformedRuleError, UnknownRuleError
from rentals_engines.chargeable import Chargeable
from rentals_engines.tracer import traced_engine

COMPOUND_FACTOR = Decimal("0.10")
_HUNDRED = Decimal("100")

EMBEDDED_RULE_ID = "lease_specific"


# =============================================================================
# Fee structures (tagged union)
# =============================================================================


@dataclass(frozen=True)
class FixedFee:
    amount: Decimal


@dataclass(frozen=True)
class PercentageFee:
    """``percentage`` of the chargeable's base amount (5 means 5%)."""

    percentage: Decimal


@dataclass(frozen=True)
class FeeTier:
    """One escalation step; exactly one of amount / percentage is set."""

    days_overdue: int
    amount: Decimal | None = None
    percentage: Decimal | None = None


@dataclass(frozen=True)
class TieredFee:
    tiers: tuple[FeeTier, ...]


@dataclass(frozen=True)
class DailyFee:
    """``rate`` per day after grace; ``compound`` adds COMPOUND_FACTOR."""

    rate: Decimal
    compound: bool = False


FeeStructure = FixedFee | PercentageFee | TieredFee | DailyFee


@dataclass(frozen=True)
class RuleConditions:
    """Bounds on the chargeable's base amount for a rule to apply."""

    min_payment_amount: Decimal | None = None
    max_payment_amount: Decimal | None = None

    def accepts(self, amount: Decimal) -> bool:
        if self.min_payment_amount is not None and amount < self.min_payment_amount:
            return False
        if self.max_payment_amount is not None and amount > self.max_payment_amount:
            return False
        return True


# =============================================================================
# Rule
# =============================================================================


@dataclass(frozen=True)
class LateFeeRule:
    """
    A named late-fee policy.

    Contract:
        ``applicable_payment_types`` empty means "any type"; configured
        rules always name their types (see rentals_config.bridges).
        ``min_amount`` / ``max_amount`` clamp the computed fee;
        ``conditions`` restrict which chargeables the rule applies to.
    Guarantees:
        A constructed rule is well-formed; validation happens here so a
        bad definition fails at load time, not mid-run.
    """

    rule_id: str
    name: str
    fee_structure: FeeStructure
    grace_period_days: int = 5
    description: str = ""
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    applicable_payment_types: frozenset[str] = field(default_factory=frozenset)
    conditions: RuleConditions = field(default_factory=RuleConditions)
    enabled: bool = True
    apply_once: bool = True

    def __post_init__(self) -> None:
        problem = self._validation_problem()
        if problem:
            raise MalformedRuleError(self.rule_id, problem)

    def _validation_problem(self) -> str | None:
        if not self.rule_id:
            return "rule_id is required"
        if self.grace_period_days < 0:
            return "grace_period_days cannot be negative"
        for label, value in (("min_amount", self.min_amount), ("max_amount", self.max_amount)):
            if value is not None and value < ZERO:
                return f"{label} cannot be negative"
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            return f"min_amount {self.min_amount} exceeds max_amount {self.max_amount}"
        cond = self.conditions
        if (
            cond.min_payment_amount is not None
            and cond.max_payment_amount is not None
            and cond.min_payment_amount > cond.max_payment_amount
        ):
            return "conditions.min_payment_amount exceeds max_payment_amount"

        match self.fee_structure:
            case FixedFee(amount=amount):
                if amount < ZERO:
                    return "fixed amount cannot be negative"
            case PercentageFee(percentage=pct):
                if pct < ZERO:
                    return "percentage cannot be negative"
            case TieredFee(tiers=tiers):
                if not tiers:
                    return "tiered fee requires at least one tier"
                for tier in tiers:
                    if tier.days_overdue < 0:
                        return "tier days_overdue cannot be negative"
                    if (tier.amount is None) == (tier.percentage is None):
                        return (
                            f"tier at {tier.days_overdue} days must set exactly "
                            "one of amount or percentage"
                        )
                    value = tier.amount if tier.amount is not None else tier.percentage
                    if value < ZERO:
                        return f"tier at {tier.days_overdue} days is negative"
            case DailyFee(rate=rate):
                if rate < ZERO:
                    return "daily rate cannot be negative"
            case _:
                return f"unsupported fee structure {type(self.fee_structure).__name__}"
        return None

    def applies_to(self, charge_types: frozenset[str]) -> bool:
        if not self.applicable_payment_types:
            return True
        return bool(self.applicable_payment_types & charge_types)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class FeeBreakdown:
    """Every intermediate value of one fee computation."""

    base_fee: Decimal
    daily_fees: Decimal
    compound_fees: Decimal
    total_before_cap: Decimal
    cap_applied: bool
    final_amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_fee": str(self.base_fee),
            "daily_fees": str(self.daily_fees),
            "compound_fees": str(self.compound_fees),
            "total_before_cap": str(self.total_before_cap),
            "cap_applied": self.cap_applied,
            "final_amount": str(self.final_amount),
        }


@dataclass(frozen=True)
class FeeComputation:
    fee: Decimal
    breakdown: FeeBreakdown


@dataclass(frozen=True)
class LateFeeCalculation:
    """A fee to charge now.

    ``amount`` is what this pass charges; ``total_fee`` is the value
    ``late_fee_applied`` should hold afterwards.
    """

    rule_id: str
    rule_name: str
    days_overdue: int
    days_after_grace: int
    amount: Decimal
    total_fee: Decimal
    breakdown: FeeBreakdown
    reason: str


# =============================================================================
# Matching
# =============================================================================


def match_rule(
    chargeable: Chargeable,
    rules: Sequence[LateFeeRule],
    days_overdue: int,
) -> LateFeeRule | None:
    """First rule that is enabled, applicable, and past its grace period."""
    for rule in rules:
        if not rule.enabled:
            continue
        if not rule.applies_to(chargeable.charge_types):
            continue
        if not rule.conditions.accepts(chargeable.base_amount):
            continue
        if days_overdue <= rule.grace_period_days:
            continue
        return rule
    return None


def select_rules(
    rules: Sequence[LateFeeRule],
    rule_ids: Sequence[str],
) -> tuple[LateFeeRule, ...]:
    """Subset of ``rules`` by id, in the order of ``rule_ids``.

    Raises:
        UnknownRuleError: If an id is not present in ``rules``.
    """
    by_id = {rule.rule_id: rule for rule in rules}
    selected: list[LateFeeRule] = []
    for rule_id in rule_ids:
        if rule_id not in by_id:
            raise UnknownRuleError(rule_id, sorted(by_id))
        selected.append(by_id[rule_id])
    return tuple(selected)


# =============================================================================
# Computation
# =============================================================================


def _tier_fee(tiers: tuple[FeeTier, ...], base_amount: Decimal, days_overdue: int) -> Decimal:
    eligible = [t for t in tiers if t.days_overdue <= days_overdue]
    if not eligible:
        return ZERO
    tier = max(eligible, key=lambda t: t.days_overdue)
    if tier.amount is not None:
        return tier.amount
    return base_amount * tier.percentage / _HUNDRED


@traced_engine(
    "late_fee", "1.0",
    fingerprint_fields=("rule", "days_overdue"),
)
def compute_fee(
    chargeable: Chargeable,
    rule: LateFeeRule,
    days_overdue: int,
) -> FeeComputation:
    """Compute the full fee ``rule`` yields at ``days_overdue``.

    Does not consider fees already applied; see ``calculate_late_fee``.
    """
    base_fee = ZERO
    daily_fees = ZERO
    compound_fees = ZERO

    match rule.fee_structure:
        case FixedFee(amount=amount):
            base_fee = amount
        case PercentageFee(percentage=pct):
            base_fee = chargeable.base_amount * pct / _HUNDRED
        case TieredFee(tiers=tiers):
            base_fee = _tier_fee(tiers, chargeable.base_amount, days_overdue)
        case DailyFee(rate=rate, compound=compound):
            days_after_grace = max(0, days_overdue - rule.grace_period_days)
            daily_fees = rate * days_after_grace
            if compound:
                compound_fees = daily_fees * COMPOUND_FACTOR

    fee = base_fee + daily_fees + compound_fees
    if rule.min_amount is not None and fee < rule.min_amount:
        fee = rule.min_amount
    total_before_cap = fee

    cap_applied = False
    if rule.max_amount is not None and fee > rule.max_amount:
        fee = rule.max_amount
        cap_applied = True

    fee = round_money(fee)
    return FeeComputation(
        fee=fee,
        breakdown=FeeBreakdown(
            base_fee=round_money(base_fee),
            daily_fees=round_money(daily_fees),
            compound_fees=round_money(compound_fees),
            total_before_cap=round_money(total_before_cap),
            cap_applied=cap_applied,
            final_amount=fee,
        ),
    )


def calculate_late_fee(
    chargeable: Chargeable,
    rule: LateFeeRule,
    days_overdue: int,
    already_applied: Decimal = ZERO,
) -> LateFeeCalculation | None:
    """
    Fee to charge now under ``rule``, or None if nothing is owed.

    Returns None when the computed fee is zero, when an apply-once rule
    meets a chargeable that already carries a fee, or when an incremental
    rule has nothing above ``already_applied`` to add.
    """
    if rule.apply_once and already_applied > ZERO:
        return None

    computation = compute_fee(chargeable, rule, days_overdue)
    if computation.fee <= ZERO:
        return None

    amount = computation.fee
    if not rule.apply_once:
        amount = computation.fee - already_applied
        if amount <= ZERO:
            return None

    days_after_grace = max(0, days_overdue - rule.grace_period_days)
    return LateFeeCalculation(
        rule_id=rule.rule_id,
        rule_name=rule.name,
        days_overdue=days_overdue,
        days_after_grace=days_after_grace,
        amount=amount,
        total_fee=computation.fee,
        breakdown=computation.breakdown,
        reason=(
            f"Late fee applied after {days_overdue} days overdue "
            f"({days_after_grace} days after {rule.grace_period_days}-day grace period)"
        ),
    )


# =============================================================================
# Embedded lease config and late-fee child payments
# =============================================================================


def rule_from_embedded_config(config: LateFeeConfig) -> LateFeeRule | None:
    """Rule equivalent of a payment's own late fee settings.

    Daily fees are incremental so later passes charge the accrued days;
    fixed and percentage fees are charged once.
    """
    if not config.enabled:
        return None
    match config.fee_type:
        case EmbeddedFeeType.FIXED:
            structure: FeeStructure = FixedFee(config.fee_amount)
        case EmbeddedFeeType.PERCENTAGE:
            structure = PercentageFee(config.fee_amount)
        case EmbeddedFeeType.DAILY:
            structure = DailyFee(config.fee_amount, compound=config.compound_daily)
    return LateFeeRule(
        rule_id=EMBEDDED_RULE_ID,
        name="Lease late fee",
        fee_structure=structure,
        grace_period_days=config.grace_period_days,
        min_amount=config.min_fee,
        max_amount=config.max_fee,
        apply_once=config.fee_type != EmbeddedFeeType.DAILY,
    )


def rules_for_payment(
    payment: Payment,
    rules: Sequence[LateFeeRule],
) -> tuple[LateFeeRule, ...]:
    """The rule table for one payment: its embedded rule first, if any."""
    embedded = (
        rule_from_embedded_config(payment.late_fee_config)
        if payment.late_fee_config is not None
        else None
    )
    if embedded is None:
        return tuple(rules)
    return (embedded, *rules)


def build_late_fee_payment(
    origin: Payment,
    amount: Decimal,
    reason: str,
    today: date,
) -> Payment:
    """New PENDING ``late_fee`` payment linked to ``origin``, due today."""
    return Payment(
        payment_id=uuid4(),
        payment_type=PaymentType.LATE_FEE,
        amount=amount,
        due_date=today,
        status=PaymentStatus.PENDING,
        tenant_id=origin.tenant_id,
        property_id=origin.property_id,
        lease_id=origin.lease_id,
        parent_payment_id=origin.payment_id,
        description=f"Late fee for payment {origin.payment_id}",
        notes=reason,
    )
