"""
Config-to-kernel bridges (``fulfillment_config.bridges``).

Translates a validated ``FulfillmentConfigurationSet`` into the kernel
objects the engine is built from.  The kernel never imports this
package; the composition root calls these functions once at startup.
"""

from __future__ import annotations

from fulfillment_config.schema import FulfillmentConfigurationSet
from fulfillment_kernel.domain.transitions import Edge, OrderStatus, Role, TransitionTable


def build_transition_table(config: FulfillmentConfigurationSet) -> TransitionTable:
    return TransitionTable(
        Edge(
            from_status=OrderStatus(rule.from_status),
            to_status=OrderStatus(rule.to_status),
            roles=frozenset(Role(role) for role in rule.roles),
        )
        for rule in config.transitions
    )


def roles(names: tuple[str, ...]) -> frozenset[Role]:
    return frozenset(Role(name) for name in names)
