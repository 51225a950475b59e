"""
Module: rentals_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines: status derivation, the transition table, late-fee
    matching and computation, reminder schedules and rent proration.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import rentals_kernel.domain, rentals_kernel.exceptions and
    sibling engine modules.  MUST NOT import rentals_services or
    rentals_batch.

Invariants enforced:
    - Purity: engines never read the clock.  "now" is always a parameter
      supplied by a service from an injected Clock.
    - Decimal-only arithmetic for money.
    - Rule tables and thresholds are frozen values passed per call.

Audit relevance:
    Status, late-fee and proration computations are wrapped by
    ``@traced_engine`` (see ``rentals_engines.tracer``) and emit
    RENTALS_ENGINE_TRACE debug records with an input fingerprint.

Usage:
    from rentals_engines import calculate_status, apply_transition
    from rentals_engines import match_rule, calculate_late_fee
"""

from rentals_engines.chargeable import (
    Chargeable,
    InvoiceChargeable,
    InvoiceView,
    PaymentChargeable,
)
from rentals_engines.late_fees import (
    COMPOUND_FACTOR,
    EMBEDDED_RULE_ID,
    DailyFee,
    FeeBreakdown,
    FeeComputation,
    FeeStructure,
    FeeTier,
    FixedFee,
    LateFeeCalculation,
    LateFeeRule,
    PercentageFee,
    RuleConditions,
    TieredFee,
    build_late_fee_payment,
    calculate_late_fee,
    compute_fee,
    match_rule,
    rule_from_embedded_config,
    rules_for_payment,
    select_rules,
)
from rentals_engines.proration import (
    ProrationBreakdown,
    ProrationConfig,
    ProrationMethod,
    ProrationResult,
    RoundingMethod,
    compare_methods,
    prorate_lease,
    prorate_move_in,
    prorate_move_out,
    prorate_period,
)
from rentals_engines.reminders import (
    DEFAULT_SCHEDULES,
    DueReminder,
    ReminderSchedule,
    due_reminders,
)
from rentals_engines.status import (
    DEFAULT_THRESHOLDS,
    StatusCalculation,
    StatusThresholds,
    calculate_status,
    day_counts,
    utc_date,
)
from rentals_engines.transitions import (
    DEFAULT_RULES,
    DEFAULT_TRANSITION_TABLE,
    TransitionContext,
    TransitionEffect,
    TransitionOutcome,
    TransitionRule,
    TransitionTable,
    apply_transition,
    is_valid_transition,
)

__all__ = [
    # Chargeable
    "Chargeable",
    "InvoiceChargeable",
    "InvoiceView",
    "PaymentChargeable",
    # Late fees
    "COMPOUND_FACTOR",
    "EMBEDDED_RULE_ID",
    "DailyFee",
    "FeeBreakdown",
    "FeeComputation",
    "FeeStructure",
    "FeeTier",
    "FixedFee",
    "LateFeeCalculation",
    "LateFeeRule",
    "PercentageFee",
    "RuleConditions",
    "TieredFee",
    "build_late_fee_payment",
    "calculate_late_fee",
    "compute_fee",
    "match_rule",
    "rule_from_embedded_config",
    "rules_for_payment",
    "select_rules",
    # Proration
    "ProrationBreakdown",
    "ProrationConfig",
    "ProrationMethod",
    "ProrationResult",
    "RoundingMethod",
    "compare_methods",
    "prorate_lease",
    "prorate_move_in",
    "prorate_move_out",
    "prorate_period",
    # Reminders
    "DEFAULT_SCHEDULES",
    "DueReminder",
    "ReminderSchedule",
    "due_reminders",
    # Status
    "DEFAULT_THRESHOLDS",
    "StatusCalculation",
    "StatusThresholds",
    "calculate_status",
    "day_counts",
    "utc_date",
    # Transitions
    "DEFAULT_RULES",
    "DEFAULT_TRANSITION_TABLE",
    "TransitionContext",
    "TransitionEffect",
    "TransitionOutcome",
    "TransitionRule",
    "TransitionTable",
    "apply_transition",
    "is_valid_transition",
]
