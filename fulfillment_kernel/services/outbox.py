"""
Outbox -- post-commit delivery of domain events.

Responsibility:
    ``record_event`` writes an OutboxEvent row inside the caller's
    transaction.  ``OutboxDispatcher`` delivers committed rows to the
    notification dispatcher and the audit writer *after* that transaction
    has ended, then marks them dispatched in a short transaction of its
    own.

Architecture position:
    Kernel > Services -- imperative shell.  Called by OrderStateMachine
    and OrderService right after commit; ``dispatch_pending`` is the
    redelivery entry point for a scheduler.

Invariants enforced:
    - No sink is ever called while an order row lock is held.
    - A sink failure never propagates to the caller of the transition
      that produced the event.  It is logged and recorded on the row
      (attempts, last_error) so ``dispatch_pending`` can retry it.

Failure modes:
    - Delivery is at-least-once: a row whose notification succeeded but
      whose audit write failed is redelivered to both sinks.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.db.engine import transaction_scope
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.events import (
    ORDER_TRANSITIONED,
    DomainEvent,
    TransitionAuditRecord,
)
from fulfillment_kernel.exceptions import FulfillmentKernelError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.outbox import OutboxEventModel

logger = get_logger("services.outbox")

_MAX_ERROR_LENGTH = 2000


class NotificationDispatcher(Protocol):
    """Fire-and-forget notification sink (email, push, websocket)."""

    def notify(self, event: DomainEvent) -> None: ...


class AuditLogWriter(Protocol):
    """Persistent audit trail sink."""

    def write(self, record: TransitionAuditRecord) -> None: ...


class LoggingNotificationDispatcher:
    """Default dispatcher: emits one structured log line per event."""

    def notify(self, event: DomainEvent) -> None:
        logger.info(
            "notification_dispatched",
            extra={
                "event_id": str(event.event_id),
                "event_type": event.event_type,
                "order_id": str(event.order_id),
                "payload": event.payload,
            },
        )


class LoggingAuditLogWriter:
    """Default audit writer: emits one structured log line per transition."""

    def write(self, record: TransitionAuditRecord) -> None:
        logger.info(
            "order_transition_audited",
            extra={
                "order_id": str(record.order_id),
                "from_status": record.from_status,
                "to_status": record.to_status,
                "actor_role": record.actor_role,
                "timestamp": record.timestamp.isoformat(),
            },
        )


def record_event(
    session: Session,
    event_type: str,
    order_id: UUID,
    occurred_at: datetime,
    payload: dict[str, Any] | None = None,
) -> OutboxEventModel:
    """Add an outbox row to the caller's transaction and flush it."""
    row = OutboxEventModel(
        event_type=event_type,
        order_id=order_id,
        payload=payload or {},
        occurred_at=occurred_at,
        attempts=0,
    )
    session.add(row)
    session.flush()
    return row


def _to_domain_event(row: OutboxEventModel) -> DomainEvent:
    return DomainEvent(
        event_id=row.id,
        event_type=row.event_type,
        order_id=row.order_id,
        occurred_at=row.occurred_at,
        payload=dict(row.payload or {}),
    )


class OutboxDispatcher:
    """
    Delivers committed outbox events to the configured sinks.

    Contract:
        ``deliver(ids)`` and ``dispatch_pending(limit)`` must be called
        outside any open transaction on the same thread.

    Guarantees:
        - Returns the number of events fully delivered.
        - Never raises for sink or bookkeeping failures.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        notifier: NotificationDispatcher | None = None,
        audit_writer: AuditLogWriter | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._notifier = notifier or LoggingNotificationDispatcher()
        self._audit_writer = audit_writer or LoggingAuditLogWriter()

    def deliver(self, event_ids: Iterable[UUID]) -> int:
        ids = list(event_ids)
        if not ids:
            return 0
        try:
            with transaction_scope(self._session_factory, operation="outbox_load") as session:
                rows = session.execute(
                    select(OutboxEventModel)
                    .where(
                        OutboxEventModel.id.in_(ids),
                        OutboxEventModel.dispatched_at.is_(None),
                    )
                    .order_by(OutboxEventModel.occurred_at)
                ).scalars().all()
                events = [_to_domain_event(row) for row in rows]
        except FulfillmentKernelError:
            logger.exception("outbox_load_failed", extra={"event_count": len(ids)})
            return 0
        return self._deliver_events(events)

    def dispatch_pending(self, limit: int = 100) -> int:
        """Redeliver events that were committed but never marked dispatched."""
        try:
            with transaction_scope(self._session_factory, operation="outbox_pending") as session:
                rows = session.execute(
                    select(OutboxEventModel)
                    .where(OutboxEventModel.dispatched_at.is_(None))
                    .order_by(OutboxEventModel.occurred_at)
                    .limit(limit)
                ).scalars().all()
                events = [_to_domain_event(row) for row in rows]
        except FulfillmentKernelError:
            logger.exception("outbox_pending_load_failed")
            return 0

        delivered = self._deliver_events(events)
        logger.info(
            "outbox_pending_dispatched",
            extra={"pending": len(events), "delivered": delivered},
        )
        return delivered

    def _deliver_events(self, events: list[DomainEvent]) -> int:
        outcomes: dict[UUID, str | None] = {}
        for event in events:
            outcomes[event.event_id] = self._send(event)
        self._mark(outcomes)
        return sum(1 for error in outcomes.values() if error is None)

    def _send(self, event: DomainEvent) -> str | None:
        """Call every sink for one event; return the first error text, if any."""
        error: str | None = None
        try:
            self._notifier.notify(event)
        except Exception as exc:
            logger.exception(
                "notification_failed",
                extra={"event_id": str(event.event_id), "event_type": event.event_type},
            )
            error = f"notify: {exc!r}"

        if event.event_type == ORDER_TRANSITIONED:
            try:
                self._audit_writer.write(TransitionAuditRecord.from_event(event))
            except Exception as exc:
                logger.exception(
                    "audit_write_failed",
                    extra={"event_id": str(event.event_id), "order_id": str(event.order_id)},
                )
                error = error or f"audit: {exc!r}"
        return error

    def _mark(self, outcomes: dict[UUID, str | None]) -> None:
        if not outcomes:
            return
        now = self._clock.now()
        try:
            with transaction_scope(self._session_factory, operation="outbox_mark") as session:
                rows = session.execute(
                    select(OutboxEventModel).where(OutboxEventModel.id.in_(list(outcomes)))
                ).scalars().all()
                for row in rows:
                    error = outcomes[row.id]
                    row.attempts = (row.attempts or 0) + 1
                    if error is None:
                        row.dispatched_at = now
                        row.last_error = None
                    else:
                        row.last_error = error[:_MAX_ERROR_LENGTH]
        except FulfillmentKernelError:
            logger.exception("outbox_mark_failed", extra={"event_count": len(outcomes)})
