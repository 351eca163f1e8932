"""
Order lifecycle states and the role-qualified transition table
(``fulfillment_kernel.domain.transitions``).

Responsibility
--------------
Pure value objects describing which status edges exist and which roles
may drive each one.  The table is built once at startup from
configuration and passed by reference; it is never a module-level
singleton and never mutated after construction.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Every edge references known statuses and roles.
* ``cancelled`` is terminal: no edge leaves it.
* Reversions (packing -> confirmed, ready_for_delivery -> packing,
  out_for_delivery -> ready_for_delivery) are ordinary edges; nothing
  special-cases them.
* Every status is reachable from ``awaiting_approval``.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class OrderStatus(str, Enum):
    """
    Order lifecycle status.

    State machine:
        AWAITING_APPROVAL -> CONFIRMED | CANCELLED
        CONFIRMED -> PACKING | CANCELLED
        PACKING -> READY_FOR_DELIVERY | CANCELLED | CONFIRMED
        READY_FOR_DELIVERY -> OUT_FOR_DELIVERY | CANCELLED | PACKING
        OUT_FOR_DELIVERY -> DELIVERED | READY_FOR_DELIVERY | CANCELLED
        DELIVERED -> CANCELLED
        CANCELLED: terminal
    """

    AWAITING_APPROVAL = "awaiting_approval"
    CONFIRMED = "confirmed"
    PACKING = "packing"
    READY_FOR_DELIVERY = "ready_for_delivery"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Role(str, Enum):
    """Actor roles as supplied by the (external) identity layer."""

    ADMIN = "admin"
    MANAGER = "manager"
    SALES = "sales"
    PACKER = "packer"
    DRIVER = "driver"
    CUSTOMER = "customer"
    SYSTEM = "system"  # Automated actors (packing timeout monitor)


class BackorderStatus(str, Enum):
    """Backorder review outcome for orders created with a stock shortfall."""

    NONE = "none"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PARTIAL_APPROVED = "partial_approved"
    REJECTED = "rejected"


INITIAL_STATUS = OrderStatus.AWAITING_APPROVAL
TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset({OrderStatus.CANCELLED})


class TransitionTableError(ValueError):
    """The transition rules do not form a valid order lifecycle."""


@dataclass(frozen=True)
class Edge:
    """One permitted status change and the roles allowed to trigger it."""

    from_status: OrderStatus
    to_status: OrderStatus
    roles: frozenset[Role]

    @property
    def key(self) -> tuple[OrderStatus, OrderStatus]:
        return (self.from_status, self.to_status)


class TransitionTable:
    """Immutable directed graph of order statuses with role-qualified edges.

    Contract:
        Built from a collection of ``Edge`` values, validated once.
        Lookups never mutate the table; instances are safe to share
        between threads.

    Guarantees:
        - ``edge(a, b)`` is None iff the pair is not a valid transition.
        - ``is_terminal(CANCELLED)`` is always True.
        - Every status is reachable from ``INITIAL_STATUS``.

    Raises:
        TransitionTableError: On duplicate edges, self-loops, edges out
            of a terminal status, or unreachable statuses.
    """

    __slots__ = ("_edges", "_targets")

    def __init__(self, edges: Iterable[Edge]):
        edge_map: dict[tuple[OrderStatus, OrderStatus], Edge] = {}
        for edge in edges:
            if edge.key in edge_map:
                raise TransitionTableError(
                    f"Duplicate edge {edge.from_status.value} -> {edge.to_status.value}"
                )
            if edge.from_status == edge.to_status:
                raise TransitionTableError(
                    f"Self-loop on {edge.from_status.value} is not a transition"
                )
            if edge.from_status in TERMINAL_STATUSES:
                raise TransitionTableError(
                    f"Terminal status {edge.from_status.value} cannot have outgoing edges"
                )
            if not edge.roles:
                raise TransitionTableError(
                    f"Edge {edge.from_status.value} -> {edge.to_status.value} has no roles"
                )
            edge_map[edge.key] = edge

        targets: dict[OrderStatus, tuple[OrderStatus, ...]] = {}
        for status in OrderStatus:
            targets[status] = tuple(
                e.to_status for e in edge_map.values() if e.from_status == status
            )

        object.__setattr__(self, "_edges", edge_map)
        object.__setattr__(self, "_targets", targets)

        unreachable = set(OrderStatus) - self.reachable_from(INITIAL_STATUS)
        if unreachable:
            names = ", ".join(sorted(s.value for s in unreachable))
            raise TransitionTableError(f"Unreachable statuses: {names}")

    def __setattr__(self, name, value):
        raise AttributeError("TransitionTable is immutable")

    def edge(self, current: OrderStatus, target: OrderStatus) -> Edge | None:
        """Return the edge for the pair, or None if it does not exist."""
        return self._edges.get((current, target))

    def targets_for(self, current: OrderStatus) -> tuple[OrderStatus, ...]:
        """All statuses reachable in one step from ``current``."""
        return self._targets[current]

    def targets_for_role(self, current: OrderStatus, role: Role) -> tuple[OrderStatus, ...]:
        """Statuses this role may move an order to from ``current``."""
        return tuple(
            target
            for target in self._targets[current]
            if role in self._edges[(current, target)].roles
        )

    def roles_for(self, current: OrderStatus, target: OrderStatus) -> frozenset[Role]:
        edge = self.edge(current, target)
        return edge.roles if edge else frozenset()

    def is_terminal(self, status: OrderStatus) -> bool:
        return not self._targets[status]

    def reachable_from(self, start: OrderStatus) -> set[OrderStatus]:
        """Breadth-first closure of statuses reachable from ``start``."""
        seen = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for target in self._targets[current]:
                if target not in seen:
                    seen.add(target)
                    queue.append(target)
        return seen

    @property
    def edges(self) -> tuple[Edge, ...]:
        return tuple(self._edges.values())

    def __len__(self) -> int:
        return len(self._edges)

    def __repr__(self) -> str:
        return f"<TransitionTable edges={len(self._edges)}>"
