"""
PackingService -- packed-item progress, session heartbeats and takeovers.

Responsibility:
    Records which lines of a packing order have been packed and keeps the
    active packing session's ``last_activity_at`` fresh, so the timeout
    monitor only reverts sessions nobody is working on.

Architecture position:
    Kernel > Services.  Takes the same order lock as the state machine,
    so a heartbeat and a timeout revert for one order serialize.

Invariants enforced:
    - A session opened with a packer id belongs to that packer.  Progress
      and heartbeats from anyone else raise PackingSessionConflictError
      until they call ``takeover``.
    - A takeover ends the old session as ``taken_over`` and opens a new
      one for the new packer; packed lines are kept.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.db.engine import transaction_scope
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import OrderSnapshot
from fulfillment_kernel.domain.transitions import OrderStatus, Role
from fulfillment_kernel.exceptions import (
    OperationNotPermittedError,
    OrderLineNotFoundError,
    OrderNotModifiableError,
    PackingSessionConflictError,
    StaleSessionConflictError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import OrderModel
from fulfillment_kernel.models.packing import PackingSessionModel, SessionEndReason
from fulfillment_kernel.services.order_state_machine import lock_order

logger = get_logger("services.packing")


def _active_session(session: Session, order: OrderModel) -> PackingSessionModel | None:
    return session.execute(
        select(PackingSessionModel).where(
            PackingSessionModel.order_id == order.id,
            PackingSessionModel.is_active.is_(True),
        )
    ).scalar_one_or_none()


def _require_owner(packing_session: PackingSessionModel, actor_id: UUID | None) -> None:
    owner = packing_session.packer_id
    if owner is not None and owner != actor_id:
        raise PackingSessionConflictError(
            str(packing_session.order_id),
            str(owner),
            str(actor_id) if actor_id else None,
        )


class PackingService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        packing_roles: Collection[Role] = (Role.ADMIN, Role.MANAGER, Role.PACKER),
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._packing_roles = frozenset(packing_roles)

    def mark_line_packed(
        self,
        order_id: UUID,
        line_id: UUID,
        packed: bool,
        actor_role: Role | str,
        *,
        actor_id: UUID | None = None,
    ) -> OrderSnapshot:
        """Mark (or unmark) one line as packed and refresh the heartbeat.

        Raises:
            OperationNotPermittedError: Role may not pack.
            OrderNotModifiableError: Order is not in ``packing``.
            OrderLineNotFoundError: Line missing or inactive.
            PackingSessionConflictError: Another packer owns the session.
        """
        role = Role(actor_role)
        if role not in self._packing_roles:
            raise OperationNotPermittedError(role.value, "pack orders")
        line_id = UUID(str(line_id))

        with transaction_scope(
            self._session_factory,
            operation="mark_line_packed",
            order_id=str(order_id),
        ) as session:
            order = lock_order(session, order_id)
            if order.status != OrderStatus.PACKING.value:
                raise OrderNotModifiableError(str(order_id), order.status, "pack lines of")
            if not any(line.id == line_id and line.is_active for line in order.lines):
                raise OrderLineNotFoundError(str(order_id), str(line_id))
            packing_session = _active_session(session, order)
            if packing_session is not None:
                _require_owner(packing_session, actor_id)

            packed_ids = [i for i in (order.packed_line_ids or []) if i != str(line_id)]
            if packed:
                packed_ids.append(str(line_id))
            # JSON column: assign a new list so the change is detected
            order.packed_line_ids = packed_ids
            order.updated_by_id = actor_id
            if packing_session is not None:
                self._refresh(packing_session)
            session.flush()
            snapshot = OrderSnapshot.from_model(order)

        logger.info(
            "order_line_packed",
            extra={
                "order_id": str(order_id),
                "line_id": str(line_id),
                "packed": packed,
                "packed_count": len(snapshot.packed_line_ids),
            },
        )
        return snapshot

    def touch(self, order_id: UUID, *, actor_id: UUID | None = None) -> datetime | None:
        """Heartbeat for the order's active session.

        Returns the new ``last_activity_at``, or None when the order has
        no active session (it already left ``packing``).  Raises
        PackingSessionConflictError when another packer owns the session.
        """
        with transaction_scope(
            self._session_factory,
            operation="packing_touch",
            order_id=str(order_id),
        ) as session:
            order = lock_order(session, order_id)
            packing_session = _active_session(session, order)
            touched = None
            if packing_session is not None:
                _require_owner(packing_session, actor_id)
                touched = self._refresh(packing_session)
        logger.debug(
            "packing_session_touched",
            extra={"order_id": str(order_id), "active": touched is not None},
        )
        return touched

    def takeover(
        self,
        order_id: UUID,
        actor_role: Role | str,
        *,
        actor_id: UUID,
    ) -> OrderSnapshot:
        """Hand the order's packing session to ``actor_id``.

        The previous session ends as ``taken_over`` and a fresh session is
        opened for the new packer.  Packed lines are kept.  Taking over
        one's own session changes nothing.

        Raises:
            OperationNotPermittedError: Role may not pack.
            OrderNotModifiableError: Order is not in ``packing``.
            StaleSessionConflictError: The session ended under us.
        """
        role = Role(actor_role)
        if role not in self._packing_roles:
            raise OperationNotPermittedError(role.value, "take over packing")
        if actor_id is None:
            raise ValueError("takeover requires an actor_id")

        with transaction_scope(
            self._session_factory,
            operation="packing_takeover",
            order_id=str(order_id),
        ) as session:
            order = lock_order(session, order_id)
            if order.status != OrderStatus.PACKING.value:
                raise OrderNotModifiableError(
                    str(order_id), order.status, "take over packing of"
                )
            previous = _active_session(session, order)
            if previous is None:
                raise StaleSessionConflictError(str(order_id), "no active packing session")

            previous_packer = previous.packer_id
            if previous_packer != actor_id:
                now = self._clock.now()
                previous.is_active = False
                previous.ended_at = now
                previous.end_reason = SessionEndReason.TAKEN_OVER.value
                session.flush()

                replacement = PackingSessionModel(
                    order_id=order.id,
                    packer_id=actor_id,
                    started_at=now,
                    last_activity_at=now,
                    is_active=True,
                )
                session.add(replacement)
                session.flush()
                order.packing_session_id = replacement.id
                order.updated_by_id = actor_id
                session.flush()
            snapshot = OrderSnapshot.from_model(order)

        if previous_packer != actor_id:
            logger.info(
                "packing_session_taken_over",
                extra={
                    "order_id": str(order_id),
                    "previous_packer_id": str(previous_packer) if previous_packer else None,
                    "packer_id": str(actor_id),
                    "packed_count": len(snapshot.packed_line_ids),
                },
            )
        return snapshot

    def _refresh(self, packing_session: PackingSessionModel) -> datetime:
        now = self._clock.now()
        if now > packing_session.last_activity_at:
            packing_session.last_activity_at = now
        return packing_session.last_activity_at
