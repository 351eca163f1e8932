"""Imperative-shell services for the fulfillment kernel."""

from fulfillment_kernel.services.backorder_approval import BackorderApprovalEngine
from fulfillment_kernel.services.credit_guard import CreditGuard
from fulfillment_kernel.services.order_service import OrderService
from fulfillment_kernel.services.order_state_machine import (
    OrderStateMachine,
    TransitionContext,
)
from fulfillment_kernel.services.outbox import (
    AuditLogWriter,
    LoggingAuditLogWriter,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    OutboxDispatcher,
)
from fulfillment_kernel.services.packing_service import PackingService
from fulfillment_kernel.services.stock_ledger import StockLedger

__all__ = [
    "AuditLogWriter",
    "BackorderApprovalEngine",
    "CreditGuard",
    "LoggingAuditLogWriter",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "OrderService",
    "OrderStateMachine",
    "OutboxDispatcher",
    "PackingService",
    "StockLedger",
    "TransitionContext",
]
