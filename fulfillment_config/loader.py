"""
Configuration Loader (``fulfillment_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``fulfillment_config.schema`` dataclasses.  Runtime callers use
``fulfillment_config.get_active_config()`` instead of calling this
module directly.

Invariants enforced
-------------------
* Required keys (``config_id``, ``transitions``) raise ``KeyError`` when
  missing; there are no silent defaults for them.
* ``compute_checksum`` is deterministic for equal documents.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value types  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from fulfillment_config.schema import (
    FulfillmentConfigurationSet,
    PackingConfig,
    StockConfig,
    TransitionRuleDef,
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
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return value


def _as_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false, got {value!r}")
    return value


def _as_str_tuple(value: Any, name: str) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{name} must be a list, got {value!r}")
    return tuple(str(item) for item in value)


def parse_transition(data: dict[str, Any]) -> TransitionRuleDef:
    """Parse a ``{from, to, roles}`` entry."""
    return TransitionRuleDef(
        from_status=str(data["from"]),
        to_status=str(data["to"]),
        roles=_as_str_tuple(data.get("roles", []), "transitions[].roles"),
    )


def parse_stock(data: dict[str, Any]) -> StockConfig:
    defaults = StockConfig()
    return StockConfig(
        max_consume_retries=_as_int(
            data.get("max_consume_retries", defaults.max_consume_retries),
            "stock.max_consume_retries",
        ),
    )


def parse_packing(data: dict[str, Any]) -> PackingConfig:
    defaults = PackingConfig()
    return PackingConfig(
        session_timeout_minutes=_as_int(
            data.get("session_timeout_minutes", defaults.session_timeout_minutes),
            "packing.session_timeout_minutes",
        ),
        sweep_interval_seconds=_as_int(
            data.get("sweep_interval_seconds", defaults.sweep_interval_seconds),
            "packing.sweep_interval_seconds",
        ),
        enforce_same_day=_as_bool(
            data.get("enforce_same_day", defaults.enforce_same_day),
            "packing.enforce_same_day",
        ),
    )


def parse_configuration(data: dict[str, Any]) -> FulfillmentConfigurationSet:
    """
    Parse a full configuration document.

    Raises:
        KeyError: if ``config_id`` or ``transitions`` is missing.
        ValueError: on wrongly typed values.
    """
    return FulfillmentConfigurationSet(
        config_id=str(data["config_id"]),
        version=_as_int(data.get("version", 1), "version"),
        stock=parse_stock(data.get("stock") or {}),
        packing=parse_packing(data.get("packing") or {}),
        order_creation_roles=_as_str_tuple(
            data.get("order_creation_roles", ["admin", "manager", "sales", "customer"]),
            "order_creation_roles",
        ),
        line_adjustment_roles=_as_str_tuple(
            data.get("line_adjustment_roles", ["admin", "manager", "packer"]),
            "line_adjustment_roles",
        ),
        packing_roles=_as_str_tuple(
            data.get("packing_roles", ["admin", "manager", "packer"]),
            "packing_roles",
        ),
        transitions=tuple(parse_transition(item) for item in data["transitions"]),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> FulfillmentConfigurationSet:
    return parse_configuration(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
