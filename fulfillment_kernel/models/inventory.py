"""
Module: fulfillment_kernel.models.inventory
Responsibility: ORM persistence for per-product stock levels and the
    movement log that records every consume and restore.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - current_stock is written only by StockLedger.
    - version is a version_id_col; concurrent decrements of the same
      product serialize on it.
    - (order_id, product_id, movement_type) is unique, so a second
      consume or restore for the same order cannot land even if the
      stock_consumed flag check were bypassed.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UUIDString


class MovementType(str, Enum):
    CONSUME = "consume"
    RESTORE = "restore"
    RECEIPT = "receipt"


class StockRecordModel(Base):
    """Current on-hand quantity for one product."""

    __tablename__ = "stock_records"

    __table_args__ = (UniqueConstraint("product_id", name="uq_stock_product"),)

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # May be fractional for weight-based products
    current_stock: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<StockRecord {self.product_id} stock={self.current_stock}>"


class StockMovementModel(Base):
    """
    One applied stock change.

    quantity is signed: negative for consume, positive for restore and
    receipt.  Receipts carry no order_id.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint(
            "order_id",
            "product_id",
            "movement_type",
            name="uq_stock_movement_once",
        ),
        Index("idx_stock_movement_product", "product_id"),
    )

    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=True,
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    previous_stock: Mapped[Decimal] = mapped_column(nullable=False)

    new_stock: Mapped[Decimal] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<StockMovement {self.movement_type} {self.product_id} {self.quantity}>"
