"""
Configuration Loader (``rentals_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses
of ``rentals_config.schema``.  Runtime callers use
``rentals_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Required keys are never defaulted: a missing ``rule_id`` or
  ``fee_structure`` raises ``KeyError``.
* Money is parsed from its string form into ``Decimal``; floats in YAML
  are converted through ``str`` so 0.1 stays 0.1.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing or mistyped keys  -> ``KeyError`` / ``ValueError`` / ``TypeError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from rentals_config.schema import (
    BatchSettings,
    ChannelSettings,
    DatabaseSettings,
    FeeStructureDef,
    FeeTierDef,
    LateFeeRuleDef,
    ReminderScheduleDef,
    RentalsConfig,
    ThresholdsDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML in {path} must be a mapping")
    return data


def parse_decimal(value: Any) -> Decimal | None:
    """Parse an optional money/percentage value."""
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse decimal from {value!r}") from exc


def parse_thresholds(data: dict[str, Any]) -> ThresholdsDef:
    defaults = ThresholdsDef()
    return ThresholdsDef(
        grace_period_days=int(data.get("grace_period_days", defaults.grace_period_days)),
        late_fee_threshold_days=int(
            data.get("late_fee_threshold_days", defaults.late_fee_threshold_days)
        ),
        severely_overdue_threshold_days=int(
            data.get("severely_overdue_threshold_days", defaults.severely_overdue_threshold_days)
        ),
        due_soon_threshold_days=int(
            data.get("due_soon_threshold_days", defaults.due_soon_threshold_days)
        ),
        upcoming_threshold_days=int(
            data.get("upcoming_threshold_days", defaults.upcoming_threshold_days)
        ),
    )


def parse_fee_structure(data: dict[str, Any]) -> FeeStructureDef:
    """Parse a ``fee_structure`` block; ``type`` is required."""
    return FeeStructureDef(
        fee_type=str(data["type"]),
        amount=parse_decimal(data.get("amount")),
        percentage=parse_decimal(data.get("percentage")),
        rate=parse_decimal(data.get("rate")),
        compound=bool(data.get("compound", False)),
        tiers=tuple(
            FeeTierDef(
                days_overdue=int(tier["days_overdue"]),
                amount=parse_decimal(tier.get("amount")),
                percentage=parse_decimal(tier.get("percentage")),
            )
            for tier in data.get("tiers", [])
        ),
    )


def parse_late_fee_rule(data: dict[str, Any]) -> LateFeeRuleDef:
    conditions = data.get("conditions") or {}
    return LateFeeRuleDef(
        rule_id=str(data["rule_id"]),
        name=str(data.get("name", data["rule_id"])),
        fee_structure=parse_fee_structure(data["fee_structure"]),
        description=str(data.get("description", "")),
        enabled=bool(data.get("enabled", True)),
        apply_once=bool(data.get("apply_once", True)),
        grace_period_days=int(data.get("grace_period_days", 5)),
        min_amount=parse_decimal(data.get("min_amount")),
        max_amount=parse_decimal(data.get("max_amount")),
        applicable_payment_types=tuple(data.get("applicable_payment_types", [])),
        min_payment_amount=parse_decimal(conditions.get("min_payment_amount")),
        max_payment_amount=parse_decimal(conditions.get("max_payment_amount")),
    )


def parse_reminder_schedule(data: dict[str, Any]) -> ReminderScheduleDef:
    return ReminderScheduleDef(
        reminder_type=str(data["type"]),
        trigger_days=int(data["trigger_days"]),
        channels=tuple(data.get("channels", ["email"])),
        template_id=str(data["template_id"]),
        enabled=bool(data.get("enabled", True)),
        priority=str(data.get("priority", "medium")),
    )


def parse_config(data: dict[str, Any]) -> RentalsConfig:
    """Parse a whole configuration document."""
    channels = data.get("channels") or {}
    batch = data.get("batch") or {}
    database = data.get("database") or {}
    db_defaults = DatabaseSettings()
    return RentalsConfig(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        thresholds=parse_thresholds(data.get("thresholds") or {}),
        late_fee_rules=tuple(
            parse_late_fee_rule(rule) for rule in data.get("late_fee_rules", [])
        ),
        reminder_schedules=tuple(
            parse_reminder_schedule(s) for s in data.get("reminder_schedules", [])
        ),
        channels=ChannelSettings(
            email=bool(channels.get("email", True)),
            sms=bool(channels.get("sms", False)),
            push=bool(channels.get("push", False)),
        ),
        batch=BatchSettings(chunk_size=int(batch.get("chunk_size", 50))),
        database=DatabaseSettings(
            url=str(database.get("url", db_defaults.url)),
            echo=bool(database.get("echo", db_defaults.echo)),
            pool_size=int(database.get("pool_size", db_defaults.pool_size)),
            max_overflow=int(database.get("max_overflow", db_defaults.max_overflow)),
        ),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
