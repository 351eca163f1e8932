"""
AuthorizationGate -- role check for a requested status change.

Responsibility:
    Answers "may this role move an order from A to B?" against an
    injected TransitionTable, returning a decision value that names the
    reason for a denial instead of a bare boolean.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Same-state requests are always NO_OP_TRANSITION, even when the
      role would otherwise be allowed.
    - Edge existence is checked before role membership, so an unknown
      edge is never reported as a role problem.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fulfillment_kernel.domain.transitions import OrderStatus, Role, TransitionTable
from fulfillment_kernel.exceptions import (
    NoOpTransitionError,
    NoSuchEdgeError,
    RoleNotPermittedError,
)


class DenialReason(str, Enum):
    NO_OP_TRANSITION = "no_op_transition"
    NO_SUCH_EDGE = "no_such_edge"
    ROLE_NOT_PERMITTED = "role_not_permitted"


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of an authorization check."""

    current: OrderStatus
    target: OrderStatus
    role: Role
    reason: DenialReason | None = None

    @property
    def allowed(self) -> bool:
        return self.reason is None

    @classmethod
    def allow(cls, current: OrderStatus, target: OrderStatus, role: Role) -> AuthorizationDecision:
        return cls(current=current, target=target, role=role)

    @classmethod
    def deny(
        cls,
        current: OrderStatus,
        target: OrderStatus,
        role: Role,
        reason: DenialReason,
    ) -> AuthorizationDecision:
        return cls(current=current, target=target, role=role, reason=reason)


class AuthorizationGate:
    """
    Role-based gate over a TransitionTable.

    Contract:
        ``check`` never raises; ``enforce`` raises the typed
        TransitionError matching the denial reason.
    """

    def __init__(self, table: TransitionTable):
        self._table = table

    @property
    def table(self) -> TransitionTable:
        return self._table

    def check(
        self,
        current: OrderStatus,
        target: OrderStatus,
        role: Role,
    ) -> AuthorizationDecision:
        if current == target:
            return AuthorizationDecision.deny(
                current, target, role, DenialReason.NO_OP_TRANSITION
            )
        edge = self._table.edge(current, target)
        if edge is None:
            return AuthorizationDecision.deny(
                current, target, role, DenialReason.NO_SUCH_EDGE
            )
        if role not in edge.roles:
            return AuthorizationDecision.deny(
                current, target, role, DenialReason.ROLE_NOT_PERMITTED
            )
        return AuthorizationDecision.allow(current, target, role)

    def enforce(
        self,
        current: OrderStatus,
        target: OrderStatus,
        role: Role,
    ) -> AuthorizationDecision:
        decision = self.check(current, target, role)
        raise_for_denial(decision, self._table)
        return decision


def raise_for_denial(decision: AuthorizationDecision, table: TransitionTable) -> None:
    """Raise the TransitionError that corresponds to a denied decision."""
    if decision.allowed:
        return
    current, target = decision.current, decision.target
    if decision.reason == DenialReason.NO_OP_TRANSITION:
        raise NoOpTransitionError(current.value)
    if decision.reason == DenialReason.NO_SUCH_EDGE:
        raise NoSuchEdgeError(
            current.value,
            target.value,
            tuple(s.value for s in table.targets_for(current)),
        )
    raise RoleNotPermittedError(
        current.value,
        target.value,
        decision.role.value,
        tuple(sorted(r.value for r in table.roles_for(current, target))),
    )
