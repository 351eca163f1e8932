"""
Module: fulfillment_kernel.models.order
Responsibility: ORM persistence for orders, their lines and their status
    history.
Architecture position: Kernel > Models.  May import from db/base.py and the
    domain enums only.

Invariants enforced:
    - status changes only through OrderStateMachine.transition().
    - stock_consumed goes false -> true at most once and true -> false at
      most once; StockLedger is the only writer.
    - version is a SQLAlchemy version_id_col: a flush against a row whose
      version moved underneath raises StaleDataError.
    - Orders are never deleted; dropped lines are deactivated, not removed.

Failure modes:
    - StaleDataError on concurrent update of the same order (mapped to
      StaleSessionConflictError by transaction_scope()).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from fulfillment_kernel.domain.transitions import BackorderStatus, OrderStatus


class OrderModel(TrackedBase):
    """
    Customer order.

    Contract:
        Created in awaiting_approval (stock shortfall) or confirmed (all
        lines available).  Afterwards the status column is written only
        by the state machine, under the order row lock.

    Guarantees:
        - order_number is unique (uq_order_number).
        - credit_reserved is the amount currently held against the
          customer's credit limit for this order.
        - packed_line_ids lists line ids packed in the current session;
          it is replaced, never mutated in place.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_order_number"),
        Index("idx_order_status", "status"),
        Index("idx_order_customer", "customer_id"),
    )

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[str] = mapped_column(
        String(30),
        default=OrderStatus.AWAITING_APPROVAL.value,
        nullable=False,
    )

    backorder_status: Mapped[str] = mapped_column(
        String(30),
        default=BackorderStatus.NONE.value,
        nullable=False,
    )

    # Exactly-once guard for the stock ledger
    stock_consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    stock_consumed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    credit_reserved: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    requested_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    packing_session_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    packed_line_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    packed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["OrderLineModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderLineModel.position",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self.status}>"

    @property
    def active_lines(self) -> list["OrderLineModel"]:
        return [line for line in self.lines if line.is_active]

    def compute_total(self) -> Decimal:
        """Sum of quantity * unit price over active lines."""
        return sum(
            (Decimal(line.quantity) * Decimal(line.unit_price) for line in self.active_lines),
            Decimal("0"),
        )


class OrderLineModel(Base):
    """One product line of an order."""

    __tablename__ = "order_lines"

    __table_args__ = (Index("idx_order_line_order", "order_id"),)

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    # Quantity as placed, before backorder approval or adjustments
    requested_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    # Units missing at creation time (0 when fully available)
    shortfall: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    order: Mapped[OrderModel] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<OrderLine {self.product_id} x{self.quantity}>"


class OrderStatusHistoryModel(Base):
    """Append-only record of every committed status change."""

    __tablename__ = "order_status_history"

    __table_args__ = (Index("idx_status_history_order", "order_id", "changed_at"),)

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    # Null for the creation entry
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)

    to_status: Mapped[str] = mapped_column(String(30), nullable=False)

    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)

    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    changed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<OrderStatusHistory {self.from_status} -> {self.to_status}>"
