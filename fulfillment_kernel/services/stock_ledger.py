"""
StockLedger -- exactly-once stock consumption and restoration per order.

Responsibility:
    Sole writer of ``StockRecord.current_stock``.  Decrements stock for an
    order's active lines when the order becomes ready for delivery, and
    puts back exactly what was taken when a consumed order is cancelled.

Architecture position:
    Kernel > Services -- imperative shell.  Called by OrderStateMachine
    inside the transition transaction; never commits.

Invariants enforced:
    - All-or-nothing: if any product is short, no record is decremented.
    - Exactly once: the order's ``stock_consumed`` flag gates both
      directions, and the movement table's unique key backs the flag up
      at the database level.
    - Concurrent decrements of the same product serialize on the record
      version; a losing writer retries against refreshed counts inside a
      savepoint, up to ``max_consume_retries``.

Failure modes:
    - InsufficientStockError listing every short product, or naming the
      exhausted retry budget.
    - AlreadyConsumedError / AlreadyRestoredError only when ``strict=True``;
      otherwise the idempotent no-op statuses are returned.
"""

from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import StockLedgerResult
from fulfillment_kernel.exceptions import (
    AlreadyConsumedError,
    AlreadyRestoredError,
    InsufficientStockError,
    StaleSessionConflictError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.inventory import (
    MovementType,
    StockMovementModel,
    StockRecordModel,
)
from fulfillment_kernel.models.order import OrderModel

logger = get_logger("services.stock_ledger")

ZERO = Decimal("0")


def aggregate_quantities(lines: Iterable[tuple[str, Decimal]]) -> OrderedDict[str, Decimal]:
    """Sum quantities per product, ordered by product id.

    Locking records in a fixed order keeps two orders that share
    products from deadlocking each other.
    """
    totals: dict[str, Decimal] = {}
    for product_id, quantity in lines:
        totals[product_id] = totals.get(product_id, ZERO) + Decimal(quantity)
    return OrderedDict(sorted(totals.items()))


class StockLedger:
    """
    Stock ledger over StockRecord rows.

    Contract:
        Every method takes the caller's session and runs inside the
        caller's transaction.  Nothing here commits.

    Guarantees:
        - ``consume`` then ``restore`` leaves every record where it started.
        - Per order, successful consumes minus successful restores is 0 or 1.
    """

    def __init__(self, clock: Clock | None = None, max_consume_retries: int = 3):
        if max_consume_retries < 1:
            raise ValueError("max_consume_retries must be at least 1")
        self._clock = clock or SystemClock()
        self._max_retries = max_consume_retries

    # ------------------------------------------------------------------
    # Order-level operations
    # ------------------------------------------------------------------

    def consume(self, session: Session, order: OrderModel, *, strict: bool = False) -> StockLedgerResult:
        """
        Decrement stock for every active line of ``order``.

        Preconditions:
            ``order`` is loaded in ``session`` and locked by the caller.

        Postconditions:
            On CONSUMED: one CONSUME movement per product, records
            decremented, ``order.stock_consumed`` is True.

        Raises:
            InsufficientStockError: Any product short, or retries exhausted.
            AlreadyConsumedError: ``strict`` and the order is already consumed.
        """
        if order.stock_consumed:
            logger.info("stock_already_consumed", extra={"order_id": str(order.id)})
            if strict:
                raise AlreadyConsumedError(str(order.id))
            return StockLedgerResult.already_consumed(order.id)

        required = aggregate_quantities(
            (line.product_id, line.quantity) for line in order.active_lines
        )

        for attempt in range(1, self._max_retries + 1):
            savepoint = session.begin_nested()
            try:
                records = self._load_records(session, list(required))
                shortfalls: dict[str, tuple[Decimal, Decimal]] = {}
                for product_id, quantity in required.items():
                    record = records.get(product_id)
                    available = Decimal(record.current_stock) if record else ZERO
                    if available < quantity:
                        shortfalls[product_id] = (quantity, available)
                if shortfalls:
                    savepoint.rollback()
                    logger.warning(
                        "stock_insufficient",
                        extra={
                            "order_id": str(order.id),
                            "short_products": sorted(shortfalls),
                        },
                    )
                    raise InsufficientStockError(str(order.id), shortfalls)

                movements: dict[str, Decimal] = {}
                for product_id, quantity in required.items():
                    record = records[product_id]
                    previous = Decimal(record.current_stock)
                    record.current_stock = previous - quantity
                    session.add(
                        StockMovementModel(
                            order_id=order.id,
                            product_id=product_id,
                            movement_type=MovementType.CONSUME.value,
                            quantity=-quantity,
                            previous_stock=previous,
                            new_stock=previous - quantity,
                        )
                    )
                    movements[product_id] = -quantity
                session.flush()
                savepoint.commit()
            except StaleDataError:
                savepoint.rollback()
                logger.info(
                    "stock_version_conflict_retry",
                    extra={"order_id": str(order.id), "attempt": attempt},
                )
                continue

            order.stock_consumed = True
            order.stock_consumed_at = self._clock.now()
            logger.info(
                "stock_consumed",
                extra={
                    "order_id": str(order.id),
                    "products": len(movements),
                    "attempts": attempt,
                },
            )
            return StockLedgerResult.consumed(order.id, movements, attempt)

        logger.warning(
            "stock_consume_retries_exhausted",
            extra={"order_id": str(order.id), "attempts": self._max_retries},
        )
        raise InsufficientStockError(
            str(order.id),
            {},
            reason=f"stock changed concurrently {self._max_retries} times",
        )

    def restore(self, session: Session, order: OrderModel, *, strict: bool = False) -> StockLedgerResult:
        """
        Put back exactly what ``consume`` took for ``order``.

        Quantities come from the order's CONSUME movements, so later line
        edits cannot skew the restore.

        Raises:
            AlreadyRestoredError: ``strict`` and the order is not consumed.
        """
        if not order.stock_consumed:
            logger.info("stock_already_restored", extra={"order_id": str(order.id)})
            if strict:
                raise AlreadyRestoredError(str(order.id))
            return StockLedgerResult.already_restored(order.id)

        consumed = session.execute(
            select(StockMovementModel).where(
                StockMovementModel.order_id == order.id,
                StockMovementModel.movement_type == MovementType.CONSUME.value,
            )
        ).scalars().all()
        if consumed:
            to_return = aggregate_quantities(
                (m.product_id, -Decimal(m.quantity)) for m in consumed
            )
        else:
            to_return = aggregate_quantities(
                (line.product_id, line.quantity) for line in order.active_lines
            )

        for attempt in range(1, self._max_retries + 1):
            savepoint = session.begin_nested()
            try:
                records = self._load_records(session, list(to_return))
                movements: dict[str, Decimal] = {}
                for product_id, quantity in to_return.items():
                    record = records.get(product_id)
                    if record is None:
                        record = StockRecordModel(product_id=product_id, current_stock=ZERO)
                        session.add(record)
                    previous = Decimal(record.current_stock or ZERO)
                    record.current_stock = previous + quantity
                    session.add(
                        StockMovementModel(
                            order_id=order.id,
                            product_id=product_id,
                            movement_type=MovementType.RESTORE.value,
                            quantity=quantity,
                            previous_stock=previous,
                            new_stock=previous + quantity,
                        )
                    )
                    movements[product_id] = quantity
                session.flush()
                savepoint.commit()
            except StaleDataError:
                savepoint.rollback()
                logger.info(
                    "stock_version_conflict_retry",
                    extra={"order_id": str(order.id), "attempt": attempt},
                )
                continue

            order.stock_consumed = False
            logger.info(
                "stock_restored",
                extra={"order_id": str(order.id), "products": len(movements)},
            )
            return StockLedgerResult.restored(order.id, movements)

        # Increments cannot be short; surface the lost races to the caller.
        raise StaleSessionConflictError(
            str(order.id), f"stock restore lost {self._max_retries} version races"
        )

    # ------------------------------------------------------------------
    # Product-level operations
    # ------------------------------------------------------------------

    def check_availability(
        self,
        session: Session,
        lines: Iterable[tuple[str, Decimal]],
    ) -> dict[str, Decimal]:
        """Return product id -> missing quantity for every short product."""
        required = aggregate_quantities(lines)
        if not required:
            return {}
        levels = {
            record.product_id: Decimal(record.current_stock)
            for record in session.execute(
                select(StockRecordModel).where(StockRecordModel.product_id.in_(list(required)))
            ).scalars()
        }
        return {
            product_id: quantity - levels.get(product_id, ZERO)
            for product_id, quantity in required.items()
            if levels.get(product_id, ZERO) < quantity
        }

    def receive(self, session: Session, product_id: str, quantity: Decimal) -> Decimal:
        """
        Goods-in: add ``quantity`` to the product, creating its record on
        first use.  Returns the new stock level.
        """
        quantity = Decimal(quantity)
        if quantity <= 0:
            raise ValueError(f"received quantity must be positive, got {quantity}")

        record = self._load_records(session, [product_id]).get(product_id)
        if record is None:
            savepoint = session.begin_nested()
            try:
                record = StockRecordModel(product_id=product_id, current_stock=ZERO)
                session.add(record)
                session.flush()
                savepoint.commit()
            except IntegrityError:
                # Another transaction created the record first
                savepoint.rollback()
                record = self._load_records(session, [product_id])[product_id]

        previous = Decimal(record.current_stock)
        record.current_stock = previous + quantity
        session.add(
            StockMovementModel(
                order_id=None,
                product_id=product_id,
                movement_type=MovementType.RECEIPT.value,
                quantity=quantity,
                previous_stock=previous,
                new_stock=previous + quantity,
            )
        )
        session.flush()
        logger.info(
            "stock_received",
            extra={"product_id": product_id, "quantity": str(quantity)},
        )
        return previous + quantity

    def _load_records(self, session: Session, product_ids: list[str]) -> dict[str, StockRecordModel]:
        if not product_ids:
            return {}
        records = session.execute(
            select(StockRecordModel)
            .where(StockRecordModel.product_id.in_(product_ids))
            .order_by(StockRecordModel.product_id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {record.product_id: record for record in records}
