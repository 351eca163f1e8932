"""ORM models for the fulfillment kernel."""

from fulfillment_kernel.models.credit import CreditLimitModel
from fulfillment_kernel.models.inventory import (
    MovementType,
    StockMovementModel,
    StockRecordModel,
)
from fulfillment_kernel.models.order import (
    OrderLineModel,
    OrderModel,
    OrderStatusHistoryModel,
)
from fulfillment_kernel.models.outbox import OutboxEventModel
from fulfillment_kernel.models.packing import PackingSessionModel, SessionEndReason

__all__ = [
    "CreditLimitModel",
    "MovementType",
    "OrderLineModel",
    "OrderModel",
    "OrderStatusHistoryModel",
    "OutboxEventModel",
    "PackingSessionModel",
    "SessionEndReason",
    "StockMovementModel",
    "StockRecordModel",
]
