"""
Configuration Schema (``fulfillment_config.schema``).

Responsibility
--------------
Frozen dataclasses describing a parsed fulfillment configuration set:
the role-qualified transition rules, role lists for order operations,
stock retry budget and packing-session timing.

Architecture position
---------------------
**Config layer** -- pure data.  Values are plain strings and numbers as
read from YAML; ``fulfillment_config.bridges`` turns them into kernel
domain objects once validation has passed.

Invariants enforced
-------------------
* Every class is ``frozen=True``; sequences are tuples.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TransitionRuleDef:
    """One ``from -> to`` edge with the roles allowed to drive it."""

    from_status: str
    to_status: str
    roles: tuple[str, ...]


@dataclass(frozen=True)
class StockConfig:
    max_consume_retries: int = 3


@dataclass(frozen=True)
class PackingConfig:
    session_timeout_minutes: int = 30
    sweep_interval_seconds: int = 300
    enforce_same_day: bool = False


@dataclass(frozen=True)
class FulfillmentConfigurationSet:
    """
    A complete, parsed configuration set.

    ``checksum`` is the SHA-256 of the canonical source document and
    identifies the set in the config trace log.
    """

    config_id: str
    version: int
    stock: StockConfig
    packing: PackingConfig
    order_creation_roles: tuple[str, ...]
    line_adjustment_roles: tuple[str, ...]
    packing_roles: tuple[str, ...]
    transitions: tuple[TransitionRuleDef, ...]
    checksum: str = ""
