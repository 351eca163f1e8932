"""
Configuration Validator (``fulfillment_config.validator``).

Responsibility
--------------
Checks a parsed ``FulfillmentConfigurationSet`` before anything is built
from it.

Invariants enforced
-------------------
* Every status and role named in the configuration is known.
* No duplicate edges, no self-loops, no edge leaves ``cancelled``.
* Every status is reachable from ``awaiting_approval``.
* Timing and retry values are positive.

Failure modes
-------------
* Errors (``ConfigValidationResult.errors``) -> the set MUST NOT be used.
* Warnings -> usable, but worth a review (e.g. no status-changing role
  for the system actor, so packing timeouts cannot revert anything).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fulfillment_config.schema import FulfillmentConfigurationSet
from fulfillment_kernel.domain.transitions import (
    INITIAL_STATUS,
    TERMINAL_STATUSES,
    OrderStatus,
    Role,
)

_STATUS_VALUES = frozenset(s.value for s in OrderStatus)
_ROLE_VALUES = frozenset(r.value for r in Role)


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: FulfillmentConfigurationSet) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _validate_numbers(config, result)
    _validate_role_lists(config, result)
    _validate_transitions(config, result)
    return result


def _validate_numbers(config: FulfillmentConfigurationSet, result: ConfigValidationResult) -> None:
    if config.stock.max_consume_retries < 1:
        result.add_error("stock.max_consume_retries must be at least 1")
    if config.packing.session_timeout_minutes < 1:
        result.add_error("packing.session_timeout_minutes must be at least 1")
    if config.packing.sweep_interval_seconds < 1:
        result.add_error("packing.sweep_interval_seconds must be at least 1")


def _validate_role_lists(config: FulfillmentConfigurationSet, result: ConfigValidationResult) -> None:
    for name in ("order_creation_roles", "line_adjustment_roles", "packing_roles"):
        roles = getattr(config, name)
        if not roles:
            result.add_error(f"{name} must name at least one role")
        for role in roles:
            if role not in _ROLE_VALUES:
                result.add_error(f"{name}: unknown role '{role}'")


def _validate_transitions(config: FulfillmentConfigurationSet, result: ConfigValidationResult) -> None:
    if not config.transitions:
        result.add_error("transitions: at least one edge is required")
        return

    seen: set[tuple[str, str]] = set()
    graph: dict[str, set[str]] = {}
    terminal_values = {s.value for s in TERMINAL_STATUSES}

    for index, rule in enumerate(config.transitions):
        where = f"transitions[{index}] {rule.from_status} -> {rule.to_status}"
        for status in (rule.from_status, rule.to_status):
            if status not in _STATUS_VALUES:
                result.add_error(f"{where}: unknown status '{status}'")
        if not rule.roles:
            result.add_error(f"{where}: no roles")
        for role in rule.roles:
            if role not in _ROLE_VALUES:
                result.add_error(f"{where}: unknown role '{role}'")
        if rule.from_status == rule.to_status:
            result.add_error(f"{where}: self-loop")
        if rule.from_status in terminal_values:
            result.add_error(f"{where}: terminal status has an outgoing edge")
        key = (rule.from_status, rule.to_status)
        if key in seen:
            result.add_error(f"{where}: duplicate edge")
        seen.add(key)
        graph.setdefault(rule.from_status, set()).add(rule.to_status)

    reached = {INITIAL_STATUS.value}
    frontier = [INITIAL_STATUS.value]
    while frontier:
        for target in graph.get(frontier.pop(), ()):
            if target not in reached:
                reached.add(target)
                frontier.append(target)
    for status in sorted(_STATUS_VALUES - reached):
        result.add_error(f"status '{status}' is unreachable from {INITIAL_STATUS.value}")

    if not any(Role.SYSTEM.value in rule.roles for rule in config.transitions):
        result.add_warning("no edge allows the system role; packing timeouts cannot revert orders")
