"""
StockLedger tests.

Drives the ledger directly against a session, the way the state machine
does under the order lock.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from fulfillment_kernel.domain.dtos import StockLedgerStatus
from fulfillment_kernel.exceptions import (
    AlreadyConsumedError,
    AlreadyRestoredError,
    InsufficientStockError,
)
from fulfillment_kernel.models.inventory import (
    MovementType,
    StockMovementModel,
    StockRecordModel,
)
from fulfillment_kernel.models.order import OrderLineModel, OrderModel
from fulfillment_kernel.services.stock_ledger import StockLedger, aggregate_quantities


@pytest.fixture
def ledger(deterministic_clock):
    return StockLedger(deterministic_clock)


def _order(session, lines, test_actor_id):
    order = OrderModel(
        order_number=f"T-{uuid4().hex[:8]}",
        customer_id="CUST-1",
        status="confirmed",
        backorder_status="none",
        stock_consumed=False,
        credit_reserved=Decimal("0"),
        total_amount=Decimal("0"),
        packed_line_ids=[],
        created_by_id=test_actor_id,
    )
    for position, (product_id, qty) in enumerate(lines):
        order.lines.append(
            OrderLineModel(
                position=position,
                product_id=product_id,
                quantity=Decimal(qty),
                unit_price=Decimal("1"),
                requested_quantity=Decimal(qty),
                shortfall=Decimal("0"),
                is_active=True,
            )
        )
    session.add(order)
    session.flush()
    return order


def _level(session, product_id):
    return Decimal(
        session.execute(
            select(StockRecordModel.current_stock).where(
                StockRecordModel.product_id == product_id
            )
        ).scalar_one()
    )


class TestAggregate:
    def test_sums_duplicate_products_and_sorts(self):
        result = aggregate_quantities(
            [("B", Decimal("2")), ("A", Decimal("1")), ("B", Decimal("3"))]
        )
        assert list(result.items()) == [("A", Decimal("1")), ("B", Decimal("5"))]


class TestReceive:
    def test_creates_record_on_first_receipt(self, session, ledger):
        assert ledger.receive(session, "SKU-1", Decimal("5")) == Decimal("5")
        assert ledger.receive(session, "SKU-1", Decimal("2")) == Decimal("7")
        assert _level(session, "SKU-1") == Decimal("7")

    def test_records_receipt_movements(self, session, ledger):
        ledger.receive(session, "SKU-1", Decimal("5"))
        movement = session.execute(select(StockMovementModel)).scalar_one()
        assert movement.movement_type == MovementType.RECEIPT.value
        assert movement.order_id is None
        assert Decimal(movement.new_stock) == Decimal("5")

    def test_non_positive_quantity_rejected(self, session, ledger):
        with pytest.raises(ValueError):
            ledger.receive(session, "SKU-1", Decimal("0"))


class TestConsume:
    def test_consume_decrements_and_flags_order(self, session, ledger, test_actor_id):
        ledger.receive(session, "SKU-1", Decimal("10"))
        ledger.receive(session, "SKU-2", Decimal("4"))
        order = _order(session, [("SKU-1", "3"), ("SKU-2", "4"), ("SKU-1", "2")], test_actor_id)

        result = ledger.consume(session, order)

        assert result.status == StockLedgerStatus.CONSUMED
        assert result.movements == {"SKU-1": Decimal("-5"), "SKU-2": Decimal("-4")}
        assert order.stock_consumed is True
        assert order.stock_consumed_at is not None
        assert _level(session, "SKU-1") == Decimal("5")
        assert _level(session, "SKU-2") == Decimal("0")

    def test_second_consume_is_noop(self, session, ledger, test_actor_id):
        ledger.receive(session, "SKU-1", Decimal("10"))
        order = _order(session, [("SKU-1", "3")], test_actor_id)
        ledger.consume(session, order)

        again = ledger.consume(session, order)

        assert again.status == StockLedgerStatus.ALREADY_CONSUMED
        assert not again.mutated
        assert _level(session, "SKU-1") == Decimal("7")

    def test_strict_second_consume_raises(self, session, ledger, test_actor_id):
        ledger.receive(session, "SKU-1", Decimal("10"))
        order = _order(session, [("SKU-1", "3")], test_actor_id)
        ledger.consume(session, order)
        with pytest.raises(AlreadyConsumedError):
            ledger.consume(session, order, strict=True)

    def test_shortfall_reports_every_short_product_and_changes_nothing(
        self, session, ledger, test_actor_id
    ):
        ledger.receive(session, "SKU-1", Decimal("1"))
        ledger.receive(session, "SKU-2", Decimal("10"))
        order = _order(
            session, [("SKU-1", "2"), ("SKU-2", "5"), ("SKU-3", "1")], test_actor_id
        )

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.consume(session, order)

        assert set(exc_info.value.shortfalls) == {"SKU-1", "SKU-3"}
        assert exc_info.value.shortfalls["SKU-1"] == (Decimal("2"), Decimal("1"))
        assert order.stock_consumed is False
        assert _level(session, "SKU-1") == Decimal("1")
        assert _level(session, "SKU-2") == Decimal("10")

    def test_inactive_lines_are_not_consumed(self, session, ledger, test_actor_id):
        ledger.receive(session, "SKU-1", Decimal("10"))
        order = _order(session, [("SKU-1", "3"), ("SKU-2", "50")], test_actor_id)
        order.lines[1].is_active = False

        result = ledger.consume(session, order)

        assert result.movements == {"SKU-1": Decimal("-3")}


class TestRestore:
    def test_restore_returns_consumed_quantities(self, session, ledger, test_actor_id):
        ledger.receive(session, "SKU-1", Decimal("10"))
        order = _order(session, [("SKU-1", "4")], test_actor_id)
        ledger.consume(session, order)

        result = ledger.restore(session, order)

        assert result.status == StockLedgerStatus.RESTORED
        assert result.movements == {"SKU-1": Decimal("4")}
        assert order.stock_consumed is False
        assert _level(session, "SKU-1") == Decimal("10")

    def test_restore_uses_movements_not_current_lines(self, session, ledger, test_actor_id):
        ledger.receive(session, "SKU-1", Decimal("10"))
        order = _order(session, [("SKU-1", "4")], test_actor_id)
        ledger.consume(session, order)
        order.lines[0].quantity = Decimal("9")

        ledger.restore(session, order)

        assert _level(session, "SKU-1") == Decimal("10")

    def test_restore_without_consume_is_noop(self, session, ledger, test_actor_id):
        ledger.receive(session, "SKU-1", Decimal("10"))
        order = _order(session, [("SKU-1", "4")], test_actor_id)

        result = ledger.restore(session, order)

        assert result.status == StockLedgerStatus.ALREADY_RESTORED
        assert _level(session, "SKU-1") == Decimal("10")
        with pytest.raises(AlreadyRestoredError):
            ledger.restore(session, order, strict=True)

    def test_double_restore_applies_once(self, session, ledger, test_actor_id):
        ledger.receive(session, "SKU-1", Decimal("10"))
        order = _order(session, [("SKU-1", "4")], test_actor_id)
        ledger.consume(session, order)
        ledger.restore(session, order)
        ledger.restore(session, order)

        assert _level(session, "SKU-1") == Decimal("10")
        restores = session.execute(
            select(StockMovementModel).where(
                StockMovementModel.movement_type == MovementType.RESTORE.value
            )
        ).scalars().all()
        assert len(restores) == 1


class TestAvailability:
    def test_reports_missing_quantity_per_product(self, session, ledger):
        ledger.receive(session, "SKU-1", Decimal("3"))
        missing = ledger.check_availability(
            session,
            [("SKU-1", Decimal("2")), ("SKU-1", Decimal("2")), ("SKU-9", Decimal("1"))],
        )
        assert missing == {"SKU-1": Decimal("1"), "SKU-9": Decimal("1")}

    def test_max_retries_must_be_positive(self, deterministic_clock):
        with pytest.raises(ValueError):
            StockLedger(deterministic_clock, max_consume_retries=0)
