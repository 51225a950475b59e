"""
Config -> Engine Bridges.

Functions that convert ``RentalsConfig`` definitions into the frozen
engine inputs.  They live in rentals_config (the producer) because the
engines and the kernel must never import rentals_config.

Usage:
    from rentals_config import get_active_config
    from rentals_config.bridges import build_late_fee_rules, build_thresholds

    config = get_active_config()
    rules = build_late_fee_rules(config)
    thresholds = build_thresholds(config)
"""

from __future__ import annotations

from rentals_config.schema import FeeStructureDef, LateFeeRuleDef, RentalsConfig
from rentals_engines.late_fees import (
    DailyFee,
    FeeStructure,
    FeeTier,
    FixedFee,
    LateFeeRule,
    PercentageFee,
    RuleConditions,
    TieredFee,
)
from rentals_engines.reminders import ReminderSchedule
from rentals_engines.status import StatusThresholds
from rentals_kernel.domain.payment import PaymentType, ReminderType
from rentals_kernel.exceptions import ConfigurationError, MalformedRuleError


def build_thresholds(config: RentalsConfig) -> StatusThresholds:
    t = config.thresholds
    try:
        return StatusThresholds(
            grace_period_days=t.grace_period_days,
            late_fee_threshold_days=t.late_fee_threshold_days,
            severely_overdue_threshold_days=t.severely_overdue_threshold_days,
            due_soon_threshold_days=t.due_soon_threshold_days,
            upcoming_threshold_days=t.upcoming_threshold_days,
        )
    except ValueError as exc:
        raise ConfigurationError(config.config_id, f"thresholds: {exc}") from exc


def _fee_structure(rule_id: str, data: FeeStructureDef) -> FeeStructure:
    match data.fee_type:
        case "fixed":
            if data.amount is None:
                raise MalformedRuleError(rule_id, "fixed fee requires amount")
            return FixedFee(data.amount)
        case "percentage":
            if data.percentage is None:
                raise MalformedRuleError(rule_id, "percentage fee requires percentage")
            return PercentageFee(data.percentage)
        case "tiered":
            return TieredFee(tuple(
                FeeTier(t.days_overdue, amount=t.amount, percentage=t.percentage)
                for t in data.tiers
            ))
        case "daily":
            if data.rate is None:
                raise MalformedRuleError(rule_id, "daily fee requires rate")
            return DailyFee(data.rate, compound=data.compound)
        case other:
            raise MalformedRuleError(rule_id, f"unknown fee type {other!r}")


def _payment_types(data: LateFeeRuleDef) -> frozenset[str]:
    types = frozenset(data.applicable_payment_types)
    if not types:
        raise MalformedRuleError(
            data.rule_id, "applicable_payment_types must name at least one payment type",
        )
    if PaymentType.LATE_FEE.value in types:
        raise MalformedRuleError(data.rule_id, "late_fee payments cannot carry a late fee")
    return types


def build_late_fee_rule(data: LateFeeRuleDef) -> LateFeeRule:
    """Raises MalformedRuleError for an invalid definition."""
    return LateFeeRule(
        rule_id=data.rule_id,
        name=data.name,
        description=data.description,
        fee_structure=_fee_structure(data.rule_id, data.fee_structure),
        grace_period_days=data.grace_period_days,
        min_amount=data.min_amount,
        max_amount=data.max_amount,
        applicable_payment_types=_payment_types(data),
        conditions=RuleConditions(
            min_payment_amount=data.min_payment_amount,
            max_payment_amount=data.max_payment_amount,
        ),
        enabled=data.enabled,
        apply_once=data.apply_once,
    )


def build_late_fee_rules(config: RentalsConfig) -> tuple[LateFeeRule, ...]:
    """Rule table in configured (priority) order."""
    return tuple(build_late_fee_rule(rule) for rule in config.late_fee_rules)


def build_reminder_schedules(config: RentalsConfig) -> tuple[ReminderSchedule, ...]:
    schedules = []
    for s in config.reminder_schedules:
        try:
            reminder_type = ReminderType(s.reminder_type)
        except ValueError as exc:
            raise ConfigurationError(
                config.config_id, f"unknown reminder type {s.reminder_type!r}",
            ) from exc
        schedules.append(ReminderSchedule(
            reminder_type=reminder_type,
            trigger_days=s.trigger_days,
            channels=s.channels,
            template_id=s.template_id,
            enabled=s.enabled,
            priority=s.priority,
        ))
    return tuple(schedules)


def enabled_channels(config: RentalsConfig) -> frozenset[str]:
    return config.channels.enabled()
