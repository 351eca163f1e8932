"""
Lifecycle side-effect policies.

Pure predicates deciding which side effects a given edge requires.  The
state machine asks these instead of re-deriving the rules at each call
site; nothing here touches the database.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from fulfillment_kernel.domain.transitions import OrderStatus

PACKING_EDGES = frozenset(
    {
        (OrderStatus.CONFIRMED, OrderStatus.PACKING),
        (OrderStatus.PACKING, OrderStatus.READY_FOR_DELIVERY),
    }
)


def requires_stock_consumption(target: OrderStatus) -> bool:
    return target == OrderStatus.READY_FOR_DELIVERY


def should_restore_stock(
    current: OrderStatus,
    target: OrderStatus,
    stock_consumed: bool,
) -> bool:
    """Cancelling returns consumed stock unless the goods were delivered."""
    return (
        target == OrderStatus.CANCELLED
        and stock_consumed
        and current != OrderStatus.DELIVERED
    )


def requires_credit_reservation(current: OrderStatus, target: OrderStatus) -> bool:
    return current == OrderStatus.AWAITING_APPROVAL and target == OrderStatus.CONFIRMED


def should_release_credit(target: OrderStatus, credit_reserved: Decimal) -> bool:
    return target == OrderStatus.CANCELLED and credit_reserved > 0


def opens_packing_session(target: OrderStatus) -> bool:
    return target == OrderStatus.PACKING


def closes_packing_session(current: OrderStatus, target: OrderStatus) -> bool:
    return current == OrderStatus.PACKING and target != OrderStatus.PACKING


def discards_packing_progress(current: OrderStatus, target: OrderStatus) -> bool:
    # packed items only survive forward progress or a revert from ready
    return current == OrderStatus.PACKING and target in (
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
    )


def session_end_reason(target: OrderStatus, is_system: bool) -> str:
    if target == OrderStatus.READY_FOR_DELIVERY:
        return "completed"
    if target == OrderStatus.CANCELLED:
        return "cancelled"
    return "timed_out" if is_system else "reverted"


def is_cross_day(
    current: OrderStatus,
    target: OrderStatus,
    requested_delivery_date: date | None,
    today: date,
) -> bool:
    """Packing for a delivery date other than today.

    Only the edges that start or finish packing count; a driver returning
    goods to ready_for_delivery packs nothing.
    """
    return (
        (current, target) in PACKING_EDGES
        and requested_delivery_date is not None
        and requested_delivery_date != today
    )
