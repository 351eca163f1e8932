"""Read-only query selectors."""

from fulfillment_kernel.selectors.base import BaseSelector
from fulfillment_kernel.selectors.order_selector import (
    CreditDTO,
    OrderSelector,
    PackingSessionDTO,
    StatusHistoryDTO,
    StockMovementDTO,
)

__all__ = [
    "BaseSelector",
    "CreditDTO",
    "OrderSelector",
    "PackingSessionDTO",
    "StatusHistoryDTO",
    "StockMovementDTO",
]
