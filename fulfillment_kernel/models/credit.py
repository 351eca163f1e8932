"""
Module: fulfillment_kernel.models.credit
Responsibility: ORM persistence for per-customer credit limits.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - current_balance <= limit after every committed reservation.
    - current_balance is written only by CreditGuard, under a row lock.
"""

from decimal import Decimal

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base


class CreditLimitModel(Base):
    """Outstanding-order ceiling for one customer."""

    __tablename__ = "credit_limits"

    __table_args__ = (UniqueConstraint("customer_id", name="uq_credit_customer"),)

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)

    limit: Mapped[Decimal] = mapped_column("credit_limit", nullable=False)

    current_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def available(self) -> Decimal:
        return Decimal(self.limit) - Decimal(self.current_balance)

    def __repr__(self) -> str:
        return f"<CreditLimit {self.customer_id} {self.current_balance}/{self.limit}>"
