"""
rentals_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``RentalsConfig``; the
    bridges in ``rentals_config.bridges`` turn it into engine inputs.

Architecture position:
    Configuration -- YAML-driven, validated at load time.  Sits above
    ``rentals_kernel`` and ``rentals_engines`` and below
    ``rentals_services`` / ``rentals_batch``.  The kernel and the engines
    MUST NEVER import from ``rentals_config``.

Invariants enforced:
    - Single entrypoint: configuration files and the ``RENTALS_CONFIG_PATH``
      / ``RENTALS_DATABASE_URL`` environment variables are read here and
      nowhere else.
    - Late-fee rules and thresholds are validated before the config is
      returned, so a bad rule fails at load time, not mid-run.

Failure modes:
    - ``FileNotFoundError`` -- the configured path does not exist.
    - ``ConfigurationError`` -- malformed YAML or missing/mistyped keys.
    - ``MalformedRuleError`` -- a late-fee rule definition is invalid.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``rentals_config_trace`` log entry with config_id, version, checksum
    and rule count, tying each nightly run to the configuration that
    governed it.
"""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path

import yaml

from rentals_config.bridges import build_late_fee_rules, build_thresholds
from rentals_config.loader import load_yaml_file, parse_config
from rentals_config.schema import RentalsConfig
from rentals_kernel.exceptions import ConfigurationError
from rentals_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "RENTALS_CONFIG_PATH"
DATABASE_URL_ENV = "RENTALS_DATABASE_URL"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> RentalsConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``config_path``, then
    ``RENTALS_CONFIG_PATH``, then the shipped default set.
    ``RENTALS_DATABASE_URL`` overrides ``database.url`` when set.

    Raises:
        FileNotFoundError: If the resolved path does not exist.
        ConfigurationError: If the document cannot be parsed.
        MalformedRuleError: If a late-fee rule is invalid.
    """
    path = Path(config_path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_PATH)

    try:
        raw = load_yaml_file(path)
        config = parse_config(raw)
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    except (KeyError, ValueError, TypeError) as exc:
        raise ConfigurationError(str(path), f"{type(exc).__name__}: {exc}") from exc

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = dataclasses.replace(
            config,
            database=dataclasses.replace(config.database, url=database_url),
        )

    # Fail fast on rules and thresholds the engines would reject.
    rules = build_late_fee_rules(config)
    build_thresholds(config)

    _logger.info(
        "rentals_config_trace",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
            "rule_count": len(rules),
            "enabled_rule_count": sum(1 for r in rules if r.enabled),
        },
    )
    return config


__all__ = ["RentalsConfig", "get_active_config"]
