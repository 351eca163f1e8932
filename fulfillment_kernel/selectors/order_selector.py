"""
Module: fulfillment_kernel.selectors.order_selector
Responsibility: Read-only views over orders, stock levels, credit and
    packing sessions.
Architecture position: Kernel > Selectors.

Failure modes:
    - Returns None or an empty list when nothing matches (never raises on
      absence of data).
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from fulfillment_kernel.domain.dtos import OrderSnapshot
from fulfillment_kernel.domain.transitions import OrderStatus
from fulfillment_kernel.models.credit import CreditLimitModel
from fulfillment_kernel.models.inventory import StockMovementModel, StockRecordModel
from fulfillment_kernel.models.order import OrderModel, OrderStatusHistoryModel
from fulfillment_kernel.models.packing import PackingSessionModel
from fulfillment_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class CreditDTO:
    customer_id: str
    limit: Decimal
    current_balance: Decimal

    @property
    def available(self) -> Decimal:
        return self.limit - self.current_balance


@dataclass(frozen=True)
class PackingSessionDTO:
    id: UUID
    order_id: UUID
    packer_id: UUID | None
    started_at: datetime
    last_activity_at: datetime
    is_active: bool
    ended_at: datetime | None
    end_reason: str | None


@dataclass(frozen=True)
class StatusHistoryDTO:
    from_status: str | None
    to_status: str
    actor_role: str
    actor_id: UUID | None
    notes: str | None
    changed_at: datetime


@dataclass(frozen=True)
class StockMovementDTO:
    order_id: UUID | None
    product_id: str
    movement_type: str
    quantity: Decimal
    previous_stock: Decimal
    new_stock: Decimal


def _session_dto(row: PackingSessionModel) -> PackingSessionDTO:
    return PackingSessionDTO(
        id=row.id,
        order_id=row.order_id,
        packer_id=row.packer_id,
        started_at=row.started_at,
        last_activity_at=row.last_activity_at,
        is_active=row.is_active,
        ended_at=row.ended_at,
        end_reason=row.end_reason,
    )


class OrderSelector(BaseSelector):
    """Queries for orders and the records the engine keeps about them."""

    def get_order(self, order_id: UUID) -> OrderSnapshot | None:
        order = self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return OrderSnapshot.from_model(order) if order else None

    def list_orders(self, status: OrderStatus | None = None) -> list[OrderSnapshot]:
        query = select(OrderModel).order_by(OrderModel.created_at, OrderModel.order_number)
        if status is not None:
            query = query.where(OrderModel.status == OrderStatus(status).value)
        return [OrderSnapshot.from_model(o) for o in self.session.execute(query).scalars()]

    def get_stock_level(self, product_id: str) -> Decimal | None:
        level = self.session.execute(
            select(StockRecordModel.current_stock).where(
                StockRecordModel.product_id == product_id
            )
        ).scalar_one_or_none()
        return Decimal(level) if level is not None else None

    def stock_movements(self, order_id: UUID) -> list[StockMovementDTO]:
        rows = self.session.execute(
            select(StockMovementModel)
            .where(StockMovementModel.order_id == order_id)
            .order_by(StockMovementModel.movement_type, StockMovementModel.product_id)
        ).scalars()
        return [
            StockMovementDTO(
                order_id=row.order_id,
                product_id=row.product_id,
                movement_type=row.movement_type,
                quantity=Decimal(row.quantity),
                previous_stock=Decimal(row.previous_stock),
                new_stock=Decimal(row.new_stock),
            )
            for row in rows
        ]

    def get_credit(self, customer_id: str) -> CreditDTO | None:
        row = self.session.execute(
            select(CreditLimitModel).where(CreditLimitModel.customer_id == customer_id)
        ).scalar_one_or_none()
        if row is None:
            return None
        return CreditDTO(
            customer_id=row.customer_id,
            limit=Decimal(row.limit),
            current_balance=Decimal(row.current_balance),
        )

    def active_session(self, order_id: UUID) -> PackingSessionDTO | None:
        row = self.session.execute(
            select(PackingSessionModel).where(
                PackingSessionModel.order_id == order_id,
                PackingSessionModel.is_active.is_(True),
            )
        ).scalar_one_or_none()
        return _session_dto(row) if row else None

    def sessions_for_order(self, order_id: UUID) -> list[PackingSessionDTO]:
        rows = self.session.execute(
            select(PackingSessionModel)
            .where(PackingSessionModel.order_id == order_id)
            .order_by(PackingSessionModel.started_at)
        ).scalars()
        return [_session_dto(row) for row in rows]

    def list_stale_sessions(self, cutoff: datetime) -> list[PackingSessionDTO]:
        """Active sessions with no activity since ``cutoff``, oldest first."""
        rows = self.session.execute(
            select(PackingSessionModel)
            .where(
                PackingSessionModel.is_active.is_(True),
                PackingSessionModel.last_activity_at < cutoff,
            )
            .order_by(PackingSessionModel.last_activity_at)
        ).scalars()
        return [_session_dto(row) for row in rows]

    def status_history(self, order_id: UUID) -> list[StatusHistoryDTO]:
        rows = self.session.execute(
            select(OrderStatusHistoryModel)
            .where(OrderStatusHistoryModel.order_id == order_id)
            .order_by(OrderStatusHistoryModel.changed_at)
        ).scalars()
        return [
            StatusHistoryDTO(
                from_status=row.from_status,
                to_status=row.to_status,
                actor_role=row.actor_role,
                actor_id=row.actor_id,
                notes=row.notes,
                changed_at=row.changed_at,
            )
            for row in rows
        ]
