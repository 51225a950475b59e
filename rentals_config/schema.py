"""
Configuration schema (``rentals_config.schema``).

Frozen dataclasses describing one configuration set as written in YAML.
They carry plain values only; ``rentals_config.bridges`` turns them into
engine objects (``StatusThresholds``, ``LateFeeRule``, ``ReminderSchedule``).

Every monetary value is a ``Decimal`` parsed from its string form.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class ThresholdsDef:
    grace_period_days: int = 5
    late_fee_threshold_days: int = 5
    severely_overdue_threshold_days: int = 30
    due_soon_threshold_days: int = 7
    upcoming_threshold_days: int = 7


@dataclass(frozen=True)
class FeeTierDef:
    days_overdue: int
    amount: Decimal | None = None
    percentage: Decimal | None = None


@dataclass(frozen=True)
class FeeStructureDef:
    """``fee_type`` is one of fixed, percentage, tiered, daily."""

    fee_type: str
    amount: Decimal | None = None
    percentage: Decimal | None = None
    rate: Decimal | None = None
    compound: bool = False
    tiers: tuple[FeeTierDef, ...] = ()


@dataclass(frozen=True)
class LateFeeRuleDef:
    rule_id: str
    name: str
    fee_structure: FeeStructureDef
    description: str = ""
    enabled: bool = True
    apply_once: bool = True
    grace_period_days: int = 5
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    applicable_payment_types: tuple[str, ...] = ()
    min_payment_amount: Decimal | None = None
    max_payment_amount: Decimal | None = None


@dataclass(frozen=True)
class ReminderScheduleDef:
    reminder_type: str
    trigger_days: int
    channels: tuple[str, ...]
    template_id: str
    enabled: bool = True
    priority: str = "medium"


@dataclass(frozen=True)
class ChannelSettings:
    """Global channel switches applied on top of each schedule's channels."""

    email: bool = True
    sms: bool = False
    push: bool = False

    def enabled(self) -> frozenset[str]:
        return frozenset(
            name for name, on in (("email", self.email), ("sms", self.sms), ("push", self.push))
            if on
        )


@dataclass(frozen=True)
class BatchSettings:
    chunk_size: int = 50


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///rentals.db"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10


@dataclass(frozen=True)
class RentalsConfig:
    """One complete configuration set.

    ``checksum`` is the SHA-256 of the canonical source document.
    """

    config_id: str
    version: int
    thresholds: ThresholdsDef = field(default_factory=ThresholdsDef)
    late_fee_rules: tuple[LateFeeRuleDef, ...] = ()
    reminder_schedules: tuple[ReminderScheduleDef, ...] = ()
    channels: ChannelSettings = field(default_factory=ChannelSettings)
    batch: BatchSettings = field(default_factory=BatchSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
