"""
Module: fulfillment_kernel.models.outbox
Responsibility: ORM persistence for committed domain events awaiting
    delivery to the notification dispatcher and audit writer.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are inserted in the same transaction as the change they
      describe; an event exists iff its change committed.
    - dispatched_at is set only after every sink accepted the event.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UTCDateTime, UUIDString


class OutboxEventModel(Base):
    __tablename__ = "outbox_events"

    __table_args__ = (Index("idx_outbox_pending", "dispatched_at", "occurred_at"),)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)

    order_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    dispatched_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxEvent {self.event_type} order={self.order_id}>"
