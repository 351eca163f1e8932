"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable values that cross the service boundary: line specs for new
    orders, order and line snapshots returned to callers, transition
    options and results, stock ledger results and monitor sweep reports.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
    ``from_model()`` class methods are boundary converters invoked only
    from the service layer; domain logic never sees ORM entities.

Invariants enforced:
    - Snapshots are frozen; callers cannot mutate engine state through them.
    - LineItemSpec rejects non-positive quantities and negative prices.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from fulfillment_kernel.domain.transitions import BackorderStatus, OrderStatus

if TYPE_CHECKING:
    from fulfillment_kernel.models.order import OrderLineModel, OrderModel

# Actor recorded on rows written by automated processes.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


@dataclass(frozen=True)
class LineItemSpec:
    """A requested order line at creation time."""

    product_id: str
    quantity: Decimal
    unit_price: Decimal

    def __post_init__(self) -> None:
        if not self.product_id:
            raise ValueError("product_id is required")
        if self.quantity <= 0:
            raise ValueError(f"quantity must be positive, got {self.quantity}")
        if self.unit_price < 0:
            raise ValueError(f"unit_price must not be negative, got {self.unit_price}")

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class LineSnapshot:
    id: UUID
    product_id: str
    quantity: Decimal
    unit_price: Decimal
    requested_quantity: Decimal
    shortfall: Decimal
    is_active: bool

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price

    @classmethod
    def from_model(cls, line: OrderLineModel) -> LineSnapshot:
        return cls(
            id=line.id,
            product_id=line.product_id,
            quantity=Decimal(line.quantity),
            unit_price=Decimal(line.unit_price),
            requested_quantity=Decimal(line.requested_quantity),
            shortfall=Decimal(line.shortfall),
            is_active=line.is_active,
        )


@dataclass(frozen=True)
class OrderSnapshot:
    """Read-only view of an order as committed."""

    id: UUID
    order_number: str
    customer_id: str
    status: OrderStatus
    backorder_status: BackorderStatus
    stock_consumed: bool
    credit_reserved: Decimal
    total_amount: Decimal
    requested_delivery_date: date | None
    packing_session_id: UUID | None
    packed_line_ids: tuple[str, ...]
    packed_at: datetime | None
    version: int
    lines: tuple[LineSnapshot, ...] = ()

    @property
    def active_lines(self) -> tuple[LineSnapshot, ...]:
        return tuple(line for line in self.lines if line.is_active)

    @classmethod
    def from_model(cls, order: OrderModel) -> OrderSnapshot:
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            status=OrderStatus(order.status),
            backorder_status=BackorderStatus(order.backorder_status),
            stock_consumed=order.stock_consumed,
            credit_reserved=Decimal(order.credit_reserved),
            total_amount=Decimal(order.total_amount),
            requested_delivery_date=order.requested_delivery_date,
            packing_session_id=order.packing_session_id,
            packed_line_ids=tuple(order.packed_line_ids or ()),
            packed_at=order.packed_at,
            version=order.version,
            lines=tuple(LineSnapshot.from_model(line) for line in order.lines),
        )


@dataclass(frozen=True)
class TransitionOptions:
    """
    Caller-supplied options for OrderStateMachine.transition.

    ``expected_status`` / ``expected_version`` turn the call into a
    compare-and-set: if the locked order no longer matches, the call
    fails with StaleSessionConflictError instead of acting on state the
    caller never saw.

    ``admin_override`` and ``allow_cross_day_packing`` only acknowledge
    soft warnings; they never bypass authorization, stock or credit.
    """

    expected_status: OrderStatus | None = None
    expected_version: int | None = None
    admin_override: bool = False
    allow_cross_day_packing: bool = False
    actor_id: UUID | None = None
    notes: str | None = None

    @property
    def acknowledges_cross_day(self) -> bool:
        return self.admin_override or self.allow_cross_day_packing


class StockLedgerStatus(str, Enum):
    CONSUMED = "consumed"
    ALREADY_CONSUMED = "already_consumed"
    RESTORED = "restored"
    ALREADY_RESTORED = "already_restored"


@dataclass(frozen=True)
class StockLedgerResult:
    """Outcome of a consume or restore call.

    ``movements`` maps product id -> signed quantity applied; empty for
    the idempotent no-op statuses.
    """

    order_id: UUID
    status: StockLedgerStatus
    movements: dict[str, Decimal] = field(default_factory=dict)
    attempts: int = 1

    @property
    def mutated(self) -> bool:
        return self.status in (StockLedgerStatus.CONSUMED, StockLedgerStatus.RESTORED)

    @classmethod
    def consumed(cls, order_id: UUID, movements: dict[str, Decimal], attempts: int) -> StockLedgerResult:
        return cls(order_id, StockLedgerStatus.CONSUMED, movements, attempts)

    @classmethod
    def already_consumed(cls, order_id: UUID) -> StockLedgerResult:
        return cls(order_id, StockLedgerStatus.ALREADY_CONSUMED)

    @classmethod
    def restored(cls, order_id: UUID, movements: dict[str, Decimal]) -> StockLedgerResult:
        return cls(order_id, StockLedgerStatus.RESTORED, movements)

    @classmethod
    def already_restored(cls, order_id: UUID) -> StockLedgerResult:
        return cls(order_id, StockLedgerStatus.ALREADY_RESTORED)


@dataclass(frozen=True)
class CreditReservation:
    customer_id: str
    limit: Decimal
    previous_balance: Decimal
    new_balance: Decimal

    @property
    def available(self) -> Decimal:
        return self.limit - self.new_balance


@dataclass(frozen=True)
class TransitionResult:
    """A committed transition."""

    order: OrderSnapshot
    from_status: OrderStatus
    warnings: tuple[str, ...] = ()
    stock: StockLedgerResult | None = None
    credit: CreditReservation | None = None

    @property
    def to_status(self) -> OrderStatus:
        return self.order.status


@dataclass(frozen=True)
class SweepReport:
    """What a single PackingSessionMonitor sweep did."""

    started_at: datetime
    skipped_concurrent: bool = False
    reverted: tuple[UUID, ...] = ()
    skipped: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = ()

    @property
    def examined(self) -> int:
        return len(self.reverted) + len(self.skipped) + len(self.failed)
