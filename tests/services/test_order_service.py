"""OrderService: creation routing, credit at creation, line adjustments."""

from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment_kernel.domain.dtos import LineItemSpec
from fulfillment_kernel.domain.events import ORDER_CREATED, ORDER_TOTAL_CHANGED
from fulfillment_kernel.domain.transitions import BackorderStatus, OrderStatus, Role
from fulfillment_kernel.exceptions import (
    CreditLimitExceededError,
    CreditLimitNotFoundError,
    OperationNotPermittedError,
    OrderCreationNotPermittedError,
    OrderLineNotFoundError,
    OrderNotModifiableError,
)
from fulfillment_kernel.services.order_service import allocate_shortfalls


def _spec(product_id, qty, price="1.00"):
    return LineItemSpec(product_id, Decimal(str(qty)), Decimal(price))


class TestAllocateShortfalls:
    def test_shortfall_lands_on_later_lines(self):
        lines = [_spec("A", 3), _spec("B", 1), _spec("A", 2)]
        assert allocate_shortfalls(lines, {"A": Decimal("4")}) == [
            Decimal("2"),
            Decimal("0"),
            Decimal("2"),
        ]

    def test_no_shortfall(self):
        assert allocate_shortfalls([_spec("A", 1)], {}) == [Decimal("0")]


class TestCreateOrder:
    def test_in_stock_order_is_confirmed_and_reserves_credit(
        self, stock, credit, place_order, balance, notifier
    ):
        stock("SKU-1", 10)
        credit("CUST-1", 1000)

        order = place_order("CUST-1", [("SKU-1", 4, "12.50")])

        assert order.status == OrderStatus.CONFIRMED
        assert order.backorder_status == BackorderStatus.NONE
        assert order.total_amount == Decimal("50.00")
        assert order.credit_reserved == Decimal("50.00")
        assert order.order_number.startswith("ORD-20240101-")
        assert balance("CUST-1") == Decimal("50")
        created = notifier.of_type(ORDER_CREATED)
        assert len(created) == 1
        assert created[0].payload["status"] == "confirmed"

    def test_creation_does_not_consume_stock(self, stock, credit, place_order, stock_level):
        stock("SKU-1", 10)
        credit("CUST-1", 1000)
        place_order("CUST-1", [("SKU-1", 4, "1.00")])
        assert stock_level("SKU-1") == Decimal("10")

    def test_short_order_awaits_approval_without_credit(
        self, stock, credit, place_order, balance
    ):
        stock("SKU-1", 3)
        credit("CUST-1", 1000)

        order = place_order("CUST-1", [("SKU-1", 2, "1.00"), ("SKU-1", 4, "1.00")])

        assert order.status == OrderStatus.AWAITING_APPROVAL
        assert order.backorder_status == BackorderStatus.PENDING_APPROVAL
        assert order.credit_reserved == Decimal("0")
        assert [line.shortfall for line in order.lines] == [Decimal("0"), Decimal("3")]
        assert balance("CUST-1") == Decimal("0")

    def test_credit_limit_exceeded_creates_nothing(self, engine, stock, credit, place_order):
        # $500 order, $1000 limit, $600 already owed
        stock("SKU-1", 10)
        credit("CUST-1", 1000, balance=600)

        with pytest.raises(CreditLimitExceededError) as exc_info:
            place_order("CUST-1", [("SKU-1", 5, "100.00")])

        assert exc_info.value.available == Decimal("400")
        with engine.read() as q:
            assert q.list_orders() == []
            assert q.get_credit("CUST-1").current_balance == Decimal("600")

    def test_customer_without_credit_row(self, stock, place_order):
        stock("SKU-1", 10)
        with pytest.raises(CreditLimitNotFoundError):
            place_order("CUST-X", [("SKU-1", 1, "1.00")])

    def test_role_not_allowed_to_create(self, stock, credit, place_order):
        stock("SKU-1", 10)
        credit("CUST-1", 1000)
        with pytest.raises(OrderCreationNotPermittedError):
            place_order("CUST-1", [("SKU-1", 1, "1.00")], role=Role.DRIVER)

    def test_empty_order_rejected(self, engine, test_actor_id):
        with pytest.raises(ValueError):
            engine.orders.create_order("CUST-1", [], Role.SALES, actor_id=test_actor_id)

    def test_explicit_order_number(self, stock, credit, place_order):
        stock("SKU-1", 10)
        credit("CUST-1", 1000)
        order = place_order("CUST-1", [("SKU-1", 1, "1.00")], order_number="WEB-1001")
        assert order.order_number == "WEB-1001"


class TestAdjustLineQuantity:
    def test_increase_re_reserves_credit(self, engine, confirmed_order, balance, notifier):
        line_id = confirmed_order.lines[0].id

        updated = engine.orders.adjust_line_quantity(
            confirmed_order.id, line_id, Decimal("12"), Role.MANAGER
        )

        assert updated.total_amount == Decimal("60")
        assert updated.credit_reserved == Decimal("60")
        assert balance("CUST-1") == Decimal("60")
        changed = notifier.of_type(ORDER_TOTAL_CHANGED)
        assert Decimal(changed[-1].payload["previous_total"]) == Decimal("50")
        assert Decimal(changed[-1].payload["total_amount"]) == Decimal("60")

    def test_adjustment_over_limit_changes_nothing(
        self, engine, stock, credit, place_order, balance, reload
    ):
        stock("SKU-1", 100)
        credit("CUST-1", 100)
        order = place_order("CUST-1", [("SKU-1", 8, "10.00")])

        with pytest.raises(CreditLimitExceededError):
            engine.orders.adjust_line_quantity(
                order.id, order.lines[0].id, Decimal("11"), Role.MANAGER
            )

        assert reload(order.id).total_amount == Decimal("80")
        assert balance("CUST-1") == Decimal("80")

    def test_decrease_frees_credit(self, engine, confirmed_order, balance):
        engine.orders.adjust_line_quantity(
            confirmed_order.id, confirmed_order.lines[0].id, Decimal("2"), Role.ADMIN
        )
        assert balance("CUST-1") == Decimal("10")

    def test_packing_adjustment_refreshes_heartbeat(
        self, engine, confirmed_order, deterministic_clock
    ):
        engine.transition(confirmed_order.id, OrderStatus.PACKING, Role.PACKER)
        later = deterministic_clock.advance(minutes=20)

        engine.orders.adjust_line_quantity(
            confirmed_order.id, confirmed_order.lines[0].id, Decimal("9"), Role.PACKER
        )

        with engine.read() as q:
            assert q.active_session(confirmed_order.id).last_activity_at == later

    def test_not_modifiable_after_consumption(self, engine, confirmed_order):
        engine.transition(confirmed_order.id, OrderStatus.PACKING, Role.PACKER)
        engine.transition(confirmed_order.id, OrderStatus.READY_FOR_DELIVERY, Role.PACKER)
        with pytest.raises(OrderNotModifiableError):
            engine.orders.adjust_line_quantity(
                confirmed_order.id, confirmed_order.lines[0].id, Decimal("1"), Role.ADMIN
            )

    def test_awaiting_approval_not_modifiable(self, engine, stock, credit, place_order):
        credit("CUST-1", 1000)
        order = place_order("CUST-1", [("SKU-NONE", 1, "1.00")])
        with pytest.raises(OrderNotModifiableError):
            engine.orders.adjust_line_quantity(
                order.id, order.lines[0].id, Decimal("2"), Role.ADMIN
            )

    def test_unknown_line(self, engine, confirmed_order):
        with pytest.raises(OrderLineNotFoundError):
            engine.orders.adjust_line_quantity(
                confirmed_order.id, uuid4(), Decimal("1"), Role.ADMIN
            )

    def test_role_not_allowed(self, engine, confirmed_order):
        with pytest.raises(OperationNotPermittedError):
            engine.orders.adjust_line_quantity(
                confirmed_order.id, confirmed_order.lines[0].id, Decimal("1"), Role.DRIVER
            )

    def test_non_positive_quantity(self, engine, confirmed_order):
        with pytest.raises(ValueError):
            engine.orders.adjust_line_quantity(
                confirmed_order.id, confirmed_order.lines[0].id, Decimal("0"), Role.ADMIN
            )
