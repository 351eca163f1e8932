"""
fulfillment_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  It loads the YAML set, validates it, and returns a
    frozen ``FulfillmentConfigurationSet``.

Architecture position:
    Configuration -- sits above ``fulfillment_kernel`` and below
    ``fulfillment_services`` / ``fulfillment_batch``.  The kernel MUST NEVER
    import from ``fulfillment_config``; ``bridges`` translates the parsed
    set into kernel objects.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- validation failures (all errors listed).

Audit relevance:
    Every successful call emits a ``FULFILLMENT_CONFIG_TRACE`` log entry
    with the config id, version, checksum and edge count, tying engine
    behaviour to the exact configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fulfillment_config.bridges import build_transition_table, roles
from fulfillment_config.loader import load_configuration
from fulfillment_config.schema import (
    FulfillmentConfigurationSet,
    PackingConfig,
    StockConfig,
    TransitionRuleDef,
)
from fulfillment_config.validator import ConfigValidationResult, validate_configuration

_logger = logging.getLogger("fulfillment_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> FulfillmentConfigurationSet:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration YAML file.
            Defaults to fulfillment_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    config = load_configuration(path)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    _logger.info(
        "FULFILLMENT_CONFIG_TRACE",
        extra={
            "trace_type": "FULFILLMENT_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "edge_count": len(config.transitions),
            "session_timeout_minutes": config.packing.session_timeout_minutes,
            "enforce_same_day": config.packing.enforce_same_day,
        },
    )
    return config


__all__ = [
    "ConfigValidationResult",
    "DEFAULT_CONFIG_PATH",
    "FulfillmentConfigurationSet",
    "PackingConfig",
    "StockConfig",
    "TransitionRuleDef",
    "build_transition_table",
    "get_active_config",
    "roles",
    "validate_configuration",
]
