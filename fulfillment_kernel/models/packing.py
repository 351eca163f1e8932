"""
Module: fulfillment_kernel.models.packing
Responsibility: ORM persistence for packing sessions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - An active session exists iff its order is in ``packing``; sessions
      are opened and closed only inside a state machine transition.
    - last_activity_at only moves forward.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UTCDateTime, UUIDString


class SessionEndReason(str, Enum):
    COMPLETED = "completed"
    REVERTED = "reverted"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    TAKEN_OVER = "taken_over"


class PackingSessionModel(Base):
    """A packer actively working one order."""

    __tablename__ = "packing_sessions"

    __table_args__ = (
        Index("idx_packing_active_activity", "is_active", "last_activity_at"),
        Index("idx_packing_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    packer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    end_reason: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def __repr__(self) -> str:
        state = "active" if self.is_active else self.end_reason
        return f"<PackingSession order={self.order_id} {state}>"
