"""
BackorderApprovalEngine -- decide orders created with a stock shortfall.

Responsibility:
    Approves all, some or none of a backordered order's lines.  Approval
    narrows the order to the approved lines and quantities, then moves it
    to ``confirmed``; the credit check on that edge runs against the new
    total.  Rejection moves it to ``cancelled``.

Architecture position:
    Kernel > Services.  Both decisions are a single
    ``OrderStateMachine.transition`` call; the line changes run in its
    ``before_apply`` hook so they commit or roll back with the status.

Invariants enforced:
    - Only orders in awaiting_approval with backorder_status
      pending_approval can be decided.
    - Credit is checked once, against the approved total only.
    - Rejection never touches stock (none was consumed yet).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping
from uuid import UUID

from fulfillment_kernel.domain.dtos import TransitionOptions, TransitionResult
from fulfillment_kernel.domain.events import BACKORDER_DECIDED
from fulfillment_kernel.domain.transitions import BackorderStatus, OrderStatus, Role
from fulfillment_kernel.exceptions import (
    NotPendingBackorderError,
    OrderLineNotFoundError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import OrderModel
from fulfillment_kernel.services.order_state_machine import (
    OrderStateMachine,
    TransitionContext,
)

logger = get_logger("services.backorder_approval")


def _require_pending(order: OrderModel) -> None:
    if (
        order.status != OrderStatus.AWAITING_APPROVAL.value
        or order.backorder_status != BackorderStatus.PENDING_APPROVAL.value
    ):
        raise NotPendingBackorderError(str(order.id), order.status, order.backorder_status)


class BackorderApprovalEngine:
    """
    Approve or reject pending backorders.

    Contract:
        ``approve`` with no line ids is the same as ``reject``.
        ``approved_quantities`` may lower, never raise, a line's quantity.
    """

    def __init__(self, state_machine: OrderStateMachine):
        self._machine = state_machine

    def approve(
        self,
        order_id: UUID,
        approved_line_ids: Iterable[UUID | str],
        actor_role: Role | str,
        *,
        approved_quantities: Mapping[UUID | str, Decimal] | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> TransitionResult:
        approved = {UUID(str(line_id)) for line_id in approved_line_ids}
        if not approved:
            return self.reject(
                order_id,
                actor_role,
                reason=notes or "no lines approved",
                actor_id=actor_id,
            )

        quantities = {
            UUID(str(line_id)): Decimal(qty)
            for line_id, qty in (approved_quantities or {}).items()
        }
        for line_id, qty in quantities.items():
            if line_id not in approved:
                raise ValueError(f"quantity given for unapproved line {line_id}")
            if qty <= 0:
                raise ValueError(f"approved quantity must be positive, got {qty}")

        def narrow_to_approved(ctx: TransitionContext) -> None:
            order = ctx.order
            _require_pending(order)

            missing = approved - {line.id for line in order.lines}
            if missing:
                raise OrderLineNotFoundError(str(order.id), str(min(missing)))

            partial = False
            dropped: list[str] = []
            for line in order.lines:
                if line.id not in approved:
                    line.is_active = False
                    dropped.append(str(line.id))
                    partial = True
                    continue
                qty = quantities.get(line.id)
                if qty is None:
                    continue
                if qty > Decimal(line.quantity):
                    raise ValueError(
                        f"approved quantity {qty} exceeds ordered {line.quantity} "
                        f"on line {line.id}"
                    )
                if qty < Decimal(line.quantity):
                    partial = True
                line.quantity = qty

            decision = (
                BackorderStatus.PARTIAL_APPROVED if partial else BackorderStatus.APPROVED
            )
            order.backorder_status = decision.value
            order.total_amount = order.compute_total()
            ctx.emit(
                BACKORDER_DECIDED,
                {
                    "decision": decision.value,
                    "approved_line_ids": sorted(str(i) for i in approved),
                    "dropped_line_ids": dropped,
                    "total_amount": str(order.total_amount),
                    "actor_role": ctx.actor_role.value,
                },
            )

        result = self._machine.transition(
            order_id,
            OrderStatus.CONFIRMED,
            actor_role,
            TransitionOptions(actor_id=actor_id, notes=notes),
            before_apply=narrow_to_approved,
        )
        logger.info(
            "backorder_approved",
            extra={
                "order_id": str(order_id),
                "backorder_status": result.order.backorder_status.value,
                "total_amount": str(result.order.total_amount),
            },
        )
        return result

    def reject(
        self,
        order_id: UUID,
        actor_role: Role | str,
        *,
        reason: str,
        actor_id: UUID | None = None,
    ) -> TransitionResult:
        def mark_rejected(ctx: TransitionContext) -> None:
            _require_pending(ctx.order)
            ctx.order.backorder_status = BackorderStatus.REJECTED.value
            ctx.emit(
                BACKORDER_DECIDED,
                {
                    "decision": BackorderStatus.REJECTED.value,
                    "reason": reason,
                    "actor_role": ctx.actor_role.value,
                },
            )

        result = self._machine.transition(
            order_id,
            OrderStatus.CANCELLED,
            actor_role,
            TransitionOptions(actor_id=actor_id, notes=reason),
            before_apply=mark_rejected,
        )
        logger.info("backorder_rejected", extra={"order_id": str(order_id)})
        return result
