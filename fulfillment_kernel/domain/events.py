"""
Domain events delivered after commit.

``DomainEvent`` is what the notification dispatcher receives;
``TransitionAuditRecord`` is what the audit writer receives.  Both are
rebuilt from committed outbox rows, so delivery never depends on the
transaction that produced them still being open.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

ORDER_TRANSITIONED = "order.transitioned"
ORDER_CREATED = "order.created"
PACKING_TIMED_OUT = "packing.timed_out"
BACKORDER_DECIDED = "backorder.decided"
ORDER_TOTAL_CHANGED = "order.total_changed"

EVENT_TYPES = frozenset(
    {
        ORDER_TRANSITIONED,
        ORDER_CREATED,
        PACKING_TIMED_OUT,
        BACKORDER_DECIDED,
        ORDER_TOTAL_CHANGED,
    }
)


@dataclass(frozen=True)
class DomainEvent:
    event_id: UUID
    event_type: str
    order_id: UUID
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionAuditRecord:
    order_id: UUID
    from_status: str
    to_status: str
    actor_role: str
    timestamp: datetime
    actor_id: UUID | None = None

    @classmethod
    def from_event(cls, event: DomainEvent) -> TransitionAuditRecord:
        actor_id = event.payload.get("actor_id")
        return cls(
            order_id=event.order_id,
            from_status=event.payload["from_status"],
            to_status=event.payload["to_status"],
            actor_role=event.payload["actor_role"],
            timestamp=event.occurred_at,
            actor_id=UUID(actor_id) if actor_id else None,
        )
