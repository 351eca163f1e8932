"""
OrderStateMachine -- the single entry point for order status changes.

Responsibility:
    Loads and locks an order, authorizes the requested edge, applies the
    stock, credit and packing-session side effects the edge requires,
    and commits the new status together with its history row and outbox
    events.  Events are delivered after commit.

Architecture position:
    Kernel > Services -- imperative shell.  Manual callers, the backorder
    approval engine and the packing session monitor all go through
    ``transition``; nothing else writes ``Order.status``.

Invariants enforced:
    - Per-order serialization: the order row is locked (``FOR UPDATE`` on
      PostgreSQL, the database write lock on SQLite) from load to commit.
    - All or nothing: a side-effect failure rolls back the status change.
    - Notification and audit delivery happen after commit, never under
      the order lock.
    - ``admin_override`` suppresses soft warnings only.

Failure modes:
    - OrderNotFoundError for an unknown id.
    - StaleSessionConflictError when ``expected_status`` /
      ``expected_version`` no longer match, or a hook rejects the state.
    - NoOpTransitionError / NoSuchEdgeError / RoleNotPermittedError.
    - CrossDayPackingError when same-day packing is enforced.
    - InsufficientStockError, CreditLimitExceededError from side effects.
    - PersistenceUnavailableError from the backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.db.engine import transaction_scope
from fulfillment_kernel.domain import policies
from fulfillment_kernel.domain.authorization import AuthorizationGate
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import (
    SYSTEM_ACTOR_ID,
    CreditReservation,
    OrderSnapshot,
    StockLedgerResult,
    TransitionOptions,
    TransitionResult,
)
from fulfillment_kernel.domain.events import ORDER_TRANSITIONED
from fulfillment_kernel.domain.transitions import OrderStatus, Role
from fulfillment_kernel.exceptions import (
    CrossDayPackingError,
    FulfillmentKernelError,
    OrderNotFoundError,
    StaleSessionConflictError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.order import OrderModel, OrderStatusHistoryModel
from fulfillment_kernel.models.packing import PackingSessionModel
from fulfillment_kernel.services.credit_guard import CreditGuard
from fulfillment_kernel.services.outbox import OutboxDispatcher, record_event
from fulfillment_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.order_state_machine")


@dataclass
class TransitionContext:
    """
    What a ``before_apply`` hook sees.

    The hook runs under the order lock, after the expectation checks and
    authorization, before any side effect.  It may mutate ``order``
    (lines, backorder status) and queue extra outbox events with ``emit``;
    raising aborts the whole transition.
    """

    session: Session
    order: OrderModel
    current_status: OrderStatus
    target_status: OrderStatus
    actor_role: Role
    now: datetime
    event_ids: list[UUID] = field(default_factory=list)

    def emit(self, event_type: str, payload: dict[str, Any] | None = None) -> None:
        row = record_event(self.session, event_type, self.order.id, self.now, payload)
        self.event_ids.append(row.id)


BeforeApply = Callable[[TransitionContext], None]


def lock_order(session: Session, order_id: UUID) -> OrderModel:
    """Load an order with a row lock and fresh column values."""
    order = session.execute(
        select(OrderModel)
        .where(OrderModel.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(str(order_id))
    return order


class OrderStateMachine:
    """
    Validated, side-effecting order status transitions.

    Contract:
        ``transition`` opens and commits its own transaction; callers must
        not hold another session's transaction open on the same thread.

    Guarantees:
        - On return, the new status, the side effects, the history row
          and the outbox rows are committed together.
        - On raise, nothing was committed.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        gate: AuthorizationGate,
        stock_ledger: StockLedger,
        credit_guard: CreditGuard,
        outbox: OutboxDispatcher,
        clock: Clock | None = None,
        enforce_same_day_packing: bool = False,
    ):
        self._session_factory = session_factory
        self._gate = gate
        self._stock = stock_ledger
        self._credit = credit_guard
        self._outbox = outbox
        self._clock = clock or SystemClock()
        self._enforce_same_day = enforce_same_day_packing

    @property
    def gate(self) -> AuthorizationGate:
        return self._gate

    def transition(
        self,
        order_id: UUID,
        target_status: OrderStatus | str,
        actor_role: Role | str,
        opts: TransitionOptions | None = None,
        *,
        before_apply: BeforeApply | None = None,
    ) -> TransitionResult:
        """
        Move ``order_id`` to ``target_status`` on behalf of ``actor_role``.

        Args:
            order_id: Order to transition.
            target_status: Requested status.
            actor_role: Role of the caller as resolved by the identity layer.
            opts: Compare-and-set expectations, soft-warning acknowledgements
                and actor metadata.
            before_apply: Hook run under the order lock; see TransitionContext.

        Returns:
            TransitionResult with the committed snapshot and any warnings.
        """
        opts = opts or TransitionOptions()
        target = OrderStatus(target_status)
        role = Role(actor_role)

        with LogContext.bind(
            order_id=str(order_id),
            actor_role=role.value,
            actor_id=str(opts.actor_id) if opts.actor_id else None,
        ):
            try:
                with transaction_scope(
                    self._session_factory,
                    operation="order_transition",
                    order_id=str(order_id),
                ) as session:
                    result, event_ids = self._apply(
                        session, order_id, target, role, opts, before_apply
                    )
            except FulfillmentKernelError as exc:
                logger.info(
                    "order_transition_rejected",
                    extra={"to_status": target.value, "error_code": exc.code},
                )
                raise

            logger.info(
                "order_transitioned",
                extra={
                    "from_status": result.from_status.value,
                    "to_status": result.to_status.value,
                    "warnings": list(result.warnings),
                },
            )
            self._outbox.deliver(event_ids)
        return result

    def _apply(
        self,
        session: Session,
        order_id: UUID,
        target: OrderStatus,
        role: Role,
        opts: TransitionOptions,
        before_apply: BeforeApply | None,
    ) -> tuple[TransitionResult, list[UUID]]:
        order = lock_order(session, order_id)
        current = OrderStatus(order.status)
        now = self._clock.now()

        if opts.expected_status is not None and current != opts.expected_status:
            raise StaleSessionConflictError(
                str(order_id),
                f"expected status {opts.expected_status.value}, found {current.value}",
            )
        if opts.expected_version is not None and order.version != opts.expected_version:
            raise StaleSessionConflictError(
                str(order_id),
                f"expected version {opts.expected_version}, found {order.version}",
            )

        self._gate.enforce(current, target, role)

        ctx = TransitionContext(
            session=session,
            order=order,
            current_status=current,
            target_status=target,
            actor_role=role,
            now=now,
        )
        if before_apply is not None:
            before_apply(ctx)

        warnings = self._check_cross_day(order, current, target, opts)

        stock_result: StockLedgerResult | None = None
        credit_result: CreditReservation | None = None

        if policies.requires_stock_consumption(target):
            stock_result = self._stock.consume(session, order)
        if policies.should_restore_stock(current, target, order.stock_consumed):
            stock_result = self._stock.restore(session, order)

        if policies.requires_credit_reservation(current, target):
            total = order.compute_total()
            credit_result = self._credit.check_and_reserve(
                session,
                order.customer_id,
                total,
                replacing=Decimal(order.credit_reserved),
            )
            order.total_amount = total
            order.credit_reserved = total
        if policies.should_release_credit(target, Decimal(order.credit_reserved)):
            self._credit.release(session, order.customer_id, Decimal(order.credit_reserved))
            order.credit_reserved = Decimal("0")

        self._apply_packing_effects(session, order, current, target, role, opts, now)

        actor_id = opts.actor_id or SYSTEM_ACTOR_ID
        order.status = target.value
        order.updated_by_id = actor_id
        session.add(
            OrderStatusHistoryModel(
                order_id=order.id,
                from_status=current.value,
                to_status=target.value,
                actor_role=role.value,
                actor_id=opts.actor_id,
                notes=opts.notes,
                changed_at=now,
            )
        )
        ctx.emit(
            ORDER_TRANSITIONED,
            {
                "from_status": current.value,
                "to_status": target.value,
                "actor_role": role.value,
                "actor_id": str(opts.actor_id) if opts.actor_id else None,
                "warnings": warnings,
                "stock": stock_result.status.value if stock_result else None,
            },
        )
        session.flush()

        result = TransitionResult(
            order=OrderSnapshot.from_model(order),
            from_status=current,
            warnings=tuple(warnings),
            stock=stock_result,
            credit=credit_result,
        )
        return result, ctx.event_ids

    def _check_cross_day(
        self,
        order: OrderModel,
        current: OrderStatus,
        target: OrderStatus,
        opts: TransitionOptions,
    ) -> list[str]:
        today = self._clock.today()
        if not policies.is_cross_day(current, target, order.requested_delivery_date, today):
            return []
        if self._enforce_same_day and not opts.acknowledges_cross_day:
            raise CrossDayPackingError(
                str(order.id),
                order.requested_delivery_date.isoformat(),
                today.isoformat(),
            )
        if opts.admin_override:
            return []
        return [
            f"cross_day_packing: delivery requested for "
            f"{order.requested_delivery_date.isoformat()}, packing on {today.isoformat()}"
        ]

    def _apply_packing_effects(
        self,
        session: Session,
        order: OrderModel,
        current: OrderStatus,
        target: OrderStatus,
        role: Role,
        opts: TransitionOptions,
        now: datetime,
    ) -> None:
        if policies.closes_packing_session(current, target):
            reason = policies.session_end_reason(target, role == Role.SYSTEM)
            active = session.execute(
                select(PackingSessionModel).where(
                    PackingSessionModel.order_id == order.id,
                    PackingSessionModel.is_active.is_(True),
                )
            ).scalars().all()
            for packing_session in active:
                packing_session.is_active = False
                packing_session.ended_at = now
                packing_session.end_reason = reason
            order.packing_session_id = None
            if target == OrderStatus.READY_FOR_DELIVERY:
                order.packed_at = now
            if policies.discards_packing_progress(current, target):
                order.packed_line_ids = []
                order.packed_at = None

        if policies.opens_packing_session(target):
            packing_session = PackingSessionModel(
                order_id=order.id,
                packer_id=opts.actor_id,
                started_at=now,
                last_activity_at=now,
                is_active=True,
            )
            session.add(packing_session)
            session.flush()
            order.packing_session_id = packing_session.id
