"""
fulfillment_services.engine -- composition root for the fulfillment engine.

Responsibility:
    Creates every kernel service exactly once from one validated
    configuration set and wires them together.  No service constructs
    another internally; all wiring is visible in ``__init__``.

Architecture position:
    Services -- top of the stack.  Imports fulfillment_config,
    fulfillment_kernel and fulfillment_batch; nothing imports this module
    except callers embedding the engine (transport adapters, tests).

Invariants enforced:
    - Single-instance lifecycle: one TransitionTable, one state machine,
      one monitor per engine.
    - All services share the same session factory and Clock.

Usage:
    engine = FulfillmentEngine.from_url("postgresql://...")
    order = engine.orders.create_order(customer_id, lines, Role.SALES, actor_id=uid)
    engine.state_machine.transition(order.id, OrderStatus.PACKING, Role.PACKER)
    engine.start_monitor()
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from fulfillment_batch.services.packing_monitor import PackingSessionMonitor
from fulfillment_config import (
    FulfillmentConfigurationSet,
    build_transition_table,
    get_active_config,
    roles,
)
from fulfillment_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    transaction_scope,
)
from fulfillment_kernel.domain.authorization import AuthorizationGate
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import CreditReservation, TransitionOptions, TransitionResult
from fulfillment_kernel.domain.transitions import OrderStatus, Role
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.selectors.order_selector import OrderSelector
from fulfillment_kernel.services.backorder_approval import BackorderApprovalEngine
from fulfillment_kernel.services.credit_guard import CreditGuard
from fulfillment_kernel.services.order_service import OrderService
from fulfillment_kernel.services.order_state_machine import BeforeApply, OrderStateMachine
from fulfillment_kernel.services.outbox import (
    AuditLogWriter,
    NotificationDispatcher,
    OutboxDispatcher,
)
from fulfillment_kernel.services.packing_service import PackingService
from fulfillment_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.engine")


class FulfillmentEngine:
    """Central factory for the fulfillment services.

    Contract:
        Receives a session factory and (optionally) a configuration set,
        clock and sinks.  Exposes each service as a public attribute.

    Non-goals:
        - Does NOT own the database engine lifecycle unless built with
          ``from_url``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: FulfillmentConfigurationSet | None = None,
        clock: Clock | None = None,
        notifier: NotificationDispatcher | None = None,
        audit_writer: AuditLogWriter | None = None,
    ) -> None:
        self.config = config or get_active_config()
        self.clock = clock or SystemClock()
        self._session_factory = session_factory

        # Pure domain, built once and shared
        self.transition_table = build_transition_table(self.config)
        self.gate = AuthorizationGate(self.transition_table)

        # Resource owners
        self.stock_ledger = StockLedger(
            self.clock, max_consume_retries=self.config.stock.max_consume_retries
        )
        self.credit_guard = CreditGuard()
        self.outbox = OutboxDispatcher(
            session_factory, self.clock, notifier=notifier, audit_writer=audit_writer
        )

        # Status owner
        self.state_machine = OrderStateMachine(
            session_factory,
            self.gate,
            self.stock_ledger,
            self.credit_guard,
            self.outbox,
            self.clock,
            enforce_same_day_packing=self.config.packing.enforce_same_day,
        )

        # Flows built on the state machine
        self.backorders = BackorderApprovalEngine(self.state_machine)
        self.orders = OrderService(
            session_factory,
            self.stock_ledger,
            self.credit_guard,
            self.outbox,
            self.clock,
            creation_roles=roles(self.config.order_creation_roles),
            adjustment_roles=roles(self.config.line_adjustment_roles),
        )
        self.packing = PackingService(
            session_factory,
            self.clock,
            packing_roles=roles(self.config.packing_roles),
        )
        self.monitor = PackingSessionMonitor(
            session_factory,
            self.state_machine,
            self.clock,
            session_timeout_minutes=self.config.packing.session_timeout_minutes,
            sweep_interval_seconds=self.config.packing.sweep_interval_seconds,
            outbox=self.outbox,
        )

        logger.info(
            "fulfillment_engine_built",
            extra={
                "config_set_id": self.config.config_id,
                "edge_count": len(self.transition_table),
            },
        )

    @classmethod
    def from_url(
        cls,
        database_url: str,
        *,
        create_schema: bool = False,
        **kwargs: Any,
    ) -> FulfillmentEngine:
        """Initialize the module-level database engine and build on it."""
        init_engine_from_url(database_url)
        if create_schema:
            create_tables()
        return cls(get_session_factory(), **kwargs)

    @property
    def session_factory(self) -> Callable[[], Session]:
        return self._session_factory

    # ------------------------------------------------------------------
    # Convenience entry points
    # ------------------------------------------------------------------

    def transition(
        self,
        order_id: UUID,
        target_status: OrderStatus | str,
        actor_role: Role | str,
        opts: TransitionOptions | None = None,
        *,
        before_apply: BeforeApply | None = None,
    ) -> TransitionResult:
        return self.state_machine.transition(
            order_id, target_status, actor_role, opts, before_apply=before_apply
        )

    def receive_stock(self, product_id: str, quantity: Decimal) -> Decimal:
        with transaction_scope(self._session_factory, operation="receive_stock") as session:
            return self.stock_ledger.receive(session, product_id, quantity)

    def set_credit_limit(
        self,
        customer_id: str,
        limit: Decimal,
        *,
        balance: Decimal | None = None,
    ) -> None:
        with transaction_scope(self._session_factory, operation="set_credit_limit") as session:
            self.credit_guard.set_limit(session, customer_id, limit, balance=balance)

    def reserve_credit(self, customer_id: str, amount: Decimal) -> CreditReservation:
        """Stand-alone credit reservation in its own transaction."""
        with transaction_scope(self._session_factory, operation="reserve_credit") as session:
            return self.credit_guard.check_and_reserve(session, customer_id, amount)

    def dispatch_pending(self, limit: int = 100) -> int:
        """Retry outbox events whose delivery failed; the monitor loop also does this."""
        return self.outbox.dispatch_pending(limit)

    @contextmanager
    def read(self) -> Iterator[OrderSelector]:
        """Selector over a short-lived session."""
        session = self._session_factory()
        try:
            yield OrderSelector(session)
        finally:
            session.close()

    def start_monitor(self) -> None:
        self.monitor.start()

    def stop_monitor(self, timeout: float = 30.0) -> None:
        self.monitor.stop(timeout)
