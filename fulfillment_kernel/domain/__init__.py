"""
Pure domain layer: lifecycle graph, authorization, policies and DTOs.

Nothing in this package performs I/O.
"""

from fulfillment_kernel.domain.authorization import (
    AuthorizationDecision,
    AuthorizationGate,
    DenialReason,
)
from fulfillment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fulfillment_kernel.domain.dtos import (
    SYSTEM_ACTOR_ID,
    CreditReservation,
    LineItemSpec,
    LineSnapshot,
    OrderSnapshot,
    StockLedgerResult,
    StockLedgerStatus,
    SweepReport,
    TransitionOptions,
    TransitionResult,
)
from fulfillment_kernel.domain.events import DomainEvent, TransitionAuditRecord
from fulfillment_kernel.domain.transitions import (
    BackorderStatus,
    Edge,
    OrderStatus,
    Role,
    TransitionTable,
    TransitionTableError,
)

__all__ = [
    "AuthorizationDecision",
    "AuthorizationGate",
    "BackorderStatus",
    "Clock",
    "CreditReservation",
    "DenialReason",
    "DeterministicClock",
    "DomainEvent",
    "Edge",
    "LineItemSpec",
    "LineSnapshot",
    "OrderSnapshot",
    "OrderStatus",
    "Role",
    "StockLedgerResult",
    "StockLedgerStatus",
    "SYSTEM_ACTOR_ID",
    "SweepReport",
    "SystemClock",
    "TransitionAuditRecord",
    "TransitionOptions",
    "TransitionResult",
    "TransitionTable",
    "TransitionTableError",
]
