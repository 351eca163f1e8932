"""
Typed Exception Hierarchy for the Fulfillment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure the engine can report has its own class with:
  1. A ``code`` class attribute (machine-readable, API-safe)
  2. Structured attributes (order id, statuses, quantities) instead of
     message strings that callers would have to parse
  3. A ``retryable`` / ``client_error`` classification so the transport
     layer can pick a 4xx-style or 5xx-style response without knowing
     every subclass

Example:
    try:
        machine.transition(order_id, OrderStatus.READY_FOR_DELIVERY, Role.PACKER)
    except InsufficientStockError as e:
        start_backorder_flow(e.shortfalls)
    except TransitionError as e:
        return error_payload(e)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FulfillmentKernelError (base)
    |
    +-- TransitionError
    |   +-- NoSuchEdgeError
    |   +-- RoleNotPermittedError
    |   +-- NoOpTransitionError
    |   +-- CrossDayPackingError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- AlreadyConsumedError
    |   +-- AlreadyRestoredError
    |
    +-- CreditError
    |   +-- CreditLimitExceededError
    |   +-- CreditLimitNotFoundError
    |
    +-- OrderError
    |   +-- OrderNotFoundError
    |   +-- OrderLineNotFoundError
    |   +-- OrderNotModifiableError
    |   +-- NotPendingBackorderError
    |   +-- OrderCreationNotPermittedError
    |   +-- OperationNotPermittedError
    |
    +-- ConcurrencyError
    |   +-- StaleSessionConflictError
    |   +-- PackingSessionConflictError
    |
    +-- PersistenceError
        +-- PersistenceUnavailableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|------------------------------------
Transition   | NO_SUCH_EDGE                 | Status pair not in transition table
             | ROLE_NOT_PERMITTED           | Role may not drive this edge
             | NO_OP_TRANSITION             | Source status == target status
             | CROSS_DAY_PACKING            | Same-day packing enforced, no ack
-------------|------------------------------|------------------------------------
Stock        | INSUFFICIENT_STOCK           | One or more products under-stocked
             | ALREADY_CONSUMED             | Strict consume on consumed order
             | ALREADY_RESTORED             | Strict restore on unconsumed order
-------------|------------------------------|------------------------------------
Credit       | CREDIT_LIMIT_EXCEEDED        | balance + total > limit
             | CREDIT_LIMIT_NOT_FOUND       | Customer has no credit row
-------------|------------------------------|------------------------------------
Order        | ORDER_NOT_FOUND              | Unknown order id
             | ORDER_LINE_NOT_FOUND         | Unknown line id on an order
             | ORDER_NOT_MODIFIABLE         | Lines changed in a locked status
             | NOT_PENDING_BACKORDER        | Approve/reject on non-backorder
             | ORDER_CREATION_NOT_PERMITTED | Role may not place orders
             | OPERATION_NOT_PERMITTED      | Role may not edit lines or pack
-------------|------------------------------|------------------------------------
Concurrency  | STALE_SESSION_CONFLICT       | Lost the per-order race
             | PACKING_SESSION_CONFLICT     | Another packer owns the session
-------------|------------------------------|------------------------------------
Persistence  | PERSISTENCE_UNAVAILABLE      | Transactional backend failure

===============================================================================
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class FulfillmentKernelError(Exception):
    """
    Base exception for all fulfillment kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FULFILLMENT_KERNEL_ERROR"
    retryable: bool = False
    client_error: bool = True


# Transition exceptions


class TransitionError(FulfillmentKernelError):
    """Base exception for rejected status transitions."""

    code: str = "TRANSITION_ERROR"


class NoSuchEdgeError(TransitionError):
    """The requested status pair is not an edge of the transition table."""

    code: str = "NO_SUCH_EDGE"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        allowed_targets: tuple[str, ...] = (),
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed_targets = allowed_targets
        allowed = ", ".join(allowed_targets) or "none"
        super().__init__(
            f"Invalid transition from {from_status} to {to_status}. "
            f"Valid transitions: {allowed}"
        )


class RoleNotPermittedError(TransitionError):
    """The actor's role may not drive this edge."""

    code: str = "ROLE_NOT_PERMITTED"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        role: str,
        allowed_roles: tuple[str, ...] = (),
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.role = role
        self.allowed_roles = allowed_roles
        super().__init__(
            f"Role '{role}' is not authorized to transition from "
            f"{from_status} to {to_status}"
        )


class NoOpTransitionError(TransitionError):
    """Source and target status are the same."""

    code: str = "NO_OP_TRANSITION"

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Order is already in status: {status}")


class CrossDayPackingError(TransitionError):
    """Packing on a day other than the requested delivery day was not acknowledged."""

    code: str = "CROSS_DAY_PACKING"

    def __init__(self, order_id: str, requested_delivery_date: str, packing_date: str):
        self.order_id = order_id
        self.requested_delivery_date = requested_delivery_date
        self.packing_date = packing_date
        super().__init__(
            f"Order {order_id} is due on {requested_delivery_date} but is being "
            f"packed on {packing_date}; pass allow_cross_day_packing to proceed"
        )


# Stock exceptions


class StockError(FulfillmentKernelError):
    """Base exception for stock ledger errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """
    One or more products cannot cover the requested quantity.

    ``shortfalls`` maps product id -> (requested, available) for every
    product that is short, not just the first one found.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        order_id: str,
        shortfalls: dict[str, tuple[Decimal, Decimal]],
        reason: str | None = None,
    ):
        self.order_id = order_id
        self.shortfalls = shortfalls
        self.reason = reason
        details = "; ".join(
            f"{product_id}: need {requested}, have {available}"
            for product_id, (requested, available) in shortfalls.items()
        )
        message = f"Insufficient stock for order {order_id}"
        if details:
            message = f"{message}: {details}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class AlreadyConsumedError(StockError):
    """Stock for this order has already been consumed (idempotent no-op)."""

    code: str = "ALREADY_CONSUMED"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Stock already consumed for order {order_id}")


class AlreadyRestoredError(StockError):
    """Stock for this order is not consumed, so there is nothing to restore."""

    code: str = "ALREADY_RESTORED"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Stock already restored (or never consumed) for order {order_id}")


# Credit exceptions


class CreditError(FulfillmentKernelError):
    """Base exception for credit guard errors."""

    code: str = "CREDIT_ERROR"


class CreditLimitExceededError(CreditError):
    """Reserving the order total would push the balance over the limit."""

    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(
        self,
        customer_id: str,
        limit: Decimal,
        current_balance: Decimal,
        requested: Decimal,
    ):
        self.customer_id = customer_id
        self.limit = limit
        self.current_balance = current_balance
        self.requested = requested
        self.available = limit - current_balance
        super().__init__(
            f"Credit limit exceeded for customer {customer_id}: "
            f"limit={limit}, balance={current_balance}, requested={requested}"
        )


class CreditLimitNotFoundError(CreditError):
    """No credit limit is configured for the customer."""

    code: str = "CREDIT_LIMIT_NOT_FOUND"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"No credit limit configured for customer {customer_id}")


# Order exceptions


class OrderError(FulfillmentKernelError):
    """Base exception for order lookup and modification errors."""

    code: str = "ORDER_ERROR"


class OrderNotFoundError(OrderError):
    """Order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class OrderLineNotFoundError(OrderError):
    """Line with given ID does not belong to the order."""

    code: str = "ORDER_LINE_NOT_FOUND"

    def __init__(self, order_id: str, line_id: str):
        self.order_id = order_id
        self.line_id = line_id
        super().__init__(f"Line {line_id} not found on order {order_id}")


class OrderNotModifiableError(OrderError):
    """The order's status does not allow this modification."""

    code: str = "ORDER_NOT_MODIFIABLE"

    def __init__(self, order_id: str, status: str, operation: str):
        self.order_id = order_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} order {order_id} in status {status}"
        )


class NotPendingBackorderError(OrderError):
    """Approve/reject was requested for an order that is not awaiting backorder review."""

    code: str = "NOT_PENDING_BACKORDER"

    def __init__(self, order_id: str, status: str, backorder_status: str):
        self.order_id = order_id
        self.status = status
        self.backorder_status = backorder_status
        super().__init__(
            f"Order {order_id} is not pending backorder approval "
            f"(status={status}, backorder_status={backorder_status})"
        )


class OrderCreationNotPermittedError(OrderError):
    """The actor's role may not place orders."""

    code: str = "ORDER_CREATION_NOT_PERMITTED"

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Role '{role}' is not permitted to create orders")


class OperationNotPermittedError(OrderError):
    """The actor's role may not perform this order operation."""

    code: str = "OPERATION_NOT_PERMITTED"

    def __init__(self, role: str, operation: str):
        self.role = role
        self.operation = operation
        super().__init__(f"Role '{role}' is not permitted to {operation}")


# Concurrency exceptions


class ConcurrencyError(FulfillmentKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class StaleSessionConflictError(ConcurrencyError):
    """
    The caller lost a race for the order: the state it acted on is gone.

    The caller should reload the order and re-evaluate its request.
    """

    code: str = "STALE_SESSION_CONFLICT"

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Stale state for order {order_id}: {reason}")


class PackingSessionConflictError(ConcurrencyError):
    """
    Another packer owns the order's active packing session.

    Not retryable: the caller must take the session over explicitly.
    """

    code: str = "PACKING_SESSION_CONFLICT"
    retryable: bool = False

    def __init__(self, order_id: str, owner_id: str, actor_id: str | None):
        self.order_id = order_id
        self.owner_id = owner_id
        self.actor_id = actor_id
        super().__init__(
            f"Order {order_id} is being packed by {owner_id}; take the session over first"
        )


# Persistence exceptions


class PersistenceError(FulfillmentKernelError):
    """Base exception for storage backend errors."""

    code: str = "PERSISTENCE_ERROR"
    retryable: bool = True
    client_error: bool = False


class PersistenceUnavailableError(PersistenceError):
    """The transactional backend failed; nothing was applied."""

    code: str = "PERSISTENCE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str | None = None):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence unavailable during {operation}")


_GENERIC_SERVER_MESSAGE = "The request could not be completed. It is safe to retry."


def error_payload(exc: FulfillmentKernelError) -> dict[str, Any]:
    """Translate a kernel error into a transport-neutral response body.

    Client-side errors (authorization, state conflicts, stock, credit)
    carry their specific code and message.  Persistence errors carry a
    generic retry-safe message so backend details never leak.
    """
    if exc.client_error:
        message = str(exc)
    else:
        message = _GENERIC_SERVER_MESSAGE
    return {
        "code": exc.code,
        "message": message,
        "retryable": exc.retryable,
        "client_error": exc.client_error,
    }
