"""
OrderService -- order creation and post-confirmation quantity changes.

Responsibility:
    Places new orders (confirmed straight away when every line is in
    stock, otherwise held for backorder approval) and changes line
    quantities on confirmed or packing orders, re-running the credit
    check against the new total each time.

Architecture position:
    Kernel > Services.  Writes orders and lines; never changes an
    existing order's status (that is OrderStateMachine's job).

Invariants enforced:
    - A confirmed order always has its total reserved against the
      customer's credit limit.
    - Any total change after creation re-reserves credit in the same
      transaction as the change (``replacing`` the previous hold).
    - Lines cannot change once stock has been consumed.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import date
from decimal import Decimal
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from fulfillment_kernel.db.engine import transaction_scope
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import LineItemSpec, OrderSnapshot
from fulfillment_kernel.domain.events import ORDER_CREATED, ORDER_TOTAL_CHANGED
from fulfillment_kernel.domain.transitions import BackorderStatus, OrderStatus, Role
from fulfillment_kernel.exceptions import (
    OperationNotPermittedError,
    OrderCreationNotPermittedError,
    OrderLineNotFoundError,
    OrderNotModifiableError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.order import (
    OrderLineModel,
    OrderModel,
    OrderStatusHistoryModel,
)
from fulfillment_kernel.models.packing import PackingSessionModel
from fulfillment_kernel.services.credit_guard import CreditGuard
from fulfillment_kernel.services.order_state_machine import lock_order
from fulfillment_kernel.services.outbox import OutboxDispatcher, record_event
from fulfillment_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.order_service")

ZERO = Decimal("0")

ADJUSTABLE_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.PACKING})


def allocate_shortfalls(
    lines: Sequence[LineItemSpec],
    product_shortfalls: dict[str, Decimal],
) -> list[Decimal]:
    """Spread each product's shortfall over its lines, later lines first.

    Earlier lines of a product are filled from available stock before
    later ones, so the shortfall lands on the last lines placed.
    """
    remaining = dict(product_shortfalls)
    result = [ZERO] * len(lines)
    for index in range(len(lines) - 1, -1, -1):
        line = lines[index]
        missing = remaining.get(line.product_id, ZERO)
        if missing <= 0:
            continue
        taken = min(missing, line.quantity)
        result[index] = taken
        remaining[line.product_id] = missing - taken
    return result


class OrderService:
    """
    Order placement and line quantity edits.

    Contract:
        Each public method runs in its own transaction and delivers its
        outbox events after commit.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        stock_ledger: StockLedger,
        credit_guard: CreditGuard,
        outbox: OutboxDispatcher,
        clock: Clock | None = None,
        creation_roles: Collection[Role] = (Role.ADMIN, Role.MANAGER, Role.SALES, Role.CUSTOMER),
        adjustment_roles: Collection[Role] = (Role.ADMIN, Role.MANAGER, Role.PACKER),
    ):
        self._session_factory = session_factory
        self._stock = stock_ledger
        self._credit = credit_guard
        self._outbox = outbox
        self._clock = clock or SystemClock()
        self._creation_roles = frozenset(creation_roles)
        self._adjustment_roles = frozenset(adjustment_roles)

    def create_order(
        self,
        customer_id: str,
        lines: Sequence[LineItemSpec],
        actor_role: Role | str,
        *,
        actor_id: UUID,
        requested_delivery_date: date | None = None,
        order_number: str | None = None,
    ) -> OrderSnapshot:
        """
        Place an order.

        Returns:
            Snapshot of the new order, ``confirmed`` when every line is in
            stock, otherwise ``awaiting_approval`` with
            ``backorder_status=pending_approval`` and per-line shortfalls.

        Raises:
            OrderCreationNotPermittedError: Role may not place orders.
            CreditLimitExceededError / CreditLimitNotFoundError: An in-stock
                order would exceed the customer's credit.
            ValueError: No lines.
        """
        role = Role(actor_role)
        if role not in self._creation_roles:
            raise OrderCreationNotPermittedError(role.value)
        if not lines:
            raise ValueError("an order needs at least one line")

        now = self._clock.now()
        number = order_number or f"ORD-{now:%Y%m%d}-{uuid4().hex[:8].upper()}"

        with LogContext.bind(actor_role=role.value, actor_id=str(actor_id)):
            with transaction_scope(self._session_factory, operation="create_order") as session:
                product_shortfalls = self._stock.check_availability(
                    session, ((line.product_id, line.quantity) for line in lines)
                )
                line_shortfalls = allocate_shortfalls(lines, product_shortfalls)
                total = sum((line.line_total for line in lines), ZERO)
                backordered = bool(product_shortfalls)

                order = OrderModel(
                    order_number=number,
                    customer_id=customer_id,
                    status=(
                        OrderStatus.AWAITING_APPROVAL.value
                        if backordered
                        else OrderStatus.CONFIRMED.value
                    ),
                    backorder_status=(
                        BackorderStatus.PENDING_APPROVAL.value
                        if backordered
                        else BackorderStatus.NONE.value
                    ),
                    stock_consumed=False,
                    credit_reserved=ZERO,
                    total_amount=total,
                    requested_delivery_date=requested_delivery_date,
                    packed_line_ids=[],
                    created_by_id=actor_id,
                )
                for position, (spec, shortfall) in enumerate(zip(lines, line_shortfalls)):
                    order.lines.append(
                        OrderLineModel(
                            position=position,
                            product_id=spec.product_id,
                            quantity=spec.quantity,
                            unit_price=spec.unit_price,
                            requested_quantity=spec.quantity,
                            shortfall=shortfall,
                            is_active=True,
                        )
                    )
                session.add(order)
                session.flush()

                if not backordered:
                    self._credit.check_and_reserve(session, customer_id, total)
                    order.credit_reserved = total

                session.add(
                    OrderStatusHistoryModel(
                        order_id=order.id,
                        from_status=None,
                        to_status=order.status,
                        actor_role=role.value,
                        actor_id=actor_id,
                        changed_at=now,
                    )
                )
                event = record_event(
                    session,
                    ORDER_CREATED,
                    order.id,
                    now,
                    {
                        "order_number": number,
                        "customer_id": customer_id,
                        "status": order.status,
                        "backorder_status": order.backorder_status,
                        "total_amount": str(total),
                        "short_products": sorted(product_shortfalls),
                    },
                )
                session.flush()
                snapshot = OrderSnapshot.from_model(order)

            logger.info(
                "order_created",
                extra={
                    "order_id": str(snapshot.id),
                    "order_number": number,
                    "status": snapshot.status.value,
                    "backordered": backordered,
                },
            )
            self._outbox.deliver([event.id])
        return snapshot

    def adjust_line_quantity(
        self,
        order_id: UUID,
        line_id: UUID,
        quantity: Decimal,
        actor_role: Role | str,
        *,
        actor_id: UUID | None = None,
    ) -> OrderSnapshot:
        """
        Change one line's quantity on a confirmed or packing order.

        The credit reservation is swapped for the new total in the same
        transaction; if the new total does not fit, nothing changes.

        Raises:
            OperationNotPermittedError: Role may not adjust lines.
            OrderNotModifiableError: Wrong status, or stock already consumed.
            OrderLineNotFoundError: Line missing or inactive.
            CreditLimitExceededError: New total exceeds remaining credit.
        """
        role = Role(actor_role)
        if role not in self._adjustment_roles:
            raise OperationNotPermittedError(role.value, "adjust line quantities")
        quantity = Decimal(quantity)
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        line_id = UUID(str(line_id))

        now = self._clock.now()
        with LogContext.bind(order_id=str(order_id), actor_role=role.value):
            with transaction_scope(
                self._session_factory,
                operation="adjust_line_quantity",
                order_id=str(order_id),
            ) as session:
                order = lock_order(session, order_id)
                status = OrderStatus(order.status)
                if status not in ADJUSTABLE_STATUSES:
                    raise OrderNotModifiableError(str(order_id), status.value, "adjust lines of")
                if order.stock_consumed:
                    raise OrderNotModifiableError(
                        str(order_id), status.value, "adjust lines of a stock-consumed"
                    )

                line = next(
                    (
                        candidate
                        for candidate in order.lines
                        if candidate.id == line_id and candidate.is_active
                    ),
                    None,
                )
                if line is None:
                    raise OrderLineNotFoundError(str(order_id), str(line_id))

                previous_quantity = Decimal(line.quantity)
                previous_total = Decimal(order.total_amount)
                line.quantity = quantity
                new_total = order.compute_total()

                self._credit.check_and_reserve(
                    session,
                    order.customer_id,
                    new_total,
                    replacing=Decimal(order.credit_reserved),
                )
                order.credit_reserved = new_total
                order.total_amount = new_total
                order.updated_by_id = actor_id

                if status == OrderStatus.PACKING and order.packing_session_id:
                    packing_session = session.get(PackingSessionModel, order.packing_session_id)
                    if packing_session is not None and packing_session.is_active:
                        packing_session.last_activity_at = max(
                            packing_session.last_activity_at, now
                        )

                event = record_event(
                    session,
                    ORDER_TOTAL_CHANGED,
                    order.id,
                    now,
                    {
                        "line_id": str(line_id),
                        "previous_quantity": str(previous_quantity),
                        "quantity": str(quantity),
                        "previous_total": str(previous_total),
                        "total_amount": str(new_total),
                        "actor_role": role.value,
                    },
                )
                session.flush()
                snapshot = OrderSnapshot.from_model(order)

            logger.info(
                "order_line_adjusted",
                extra={
                    "line_id": str(line_id),
                    "quantity": str(quantity),
                    "total_amount": str(new_total),
                },
            )
            self._outbox.deliver([event.id])
        return snapshot
