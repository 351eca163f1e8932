"""
FulfillmentEngine composition and the end-to-end order journeys.

The scenarios follow an order from placement to its final status the
way a warehouse would drive it.
"""

from decimal import Decimal

import pytest

from fulfillment_kernel.db.engine import get_session_factory, reset_engine
from fulfillment_kernel.domain.transitions import BackorderStatus, OrderStatus, Role
from fulfillment_kernel.exceptions import CreditLimitExceededError
from fulfillment_services import FulfillmentEngine


class TestComposition:
    def test_services_share_one_table(self, engine):
        assert engine.state_machine.gate is engine.gate
        assert engine.gate.table is engine.transition_table

    def test_from_url_creates_schema(self, tmp_path, active_config, deterministic_clock):
        reset_engine()
        built = FulfillmentEngine.from_url(
            f"sqlite:///{tmp_path / 'standalone.db'}",
            create_schema=True,
            config=active_config,
            clock=deterministic_clock,
        )
        try:
            assert built.receive_stock("SKU-1", Decimal("3")) == Decimal("3")
            assert built.session_factory is get_session_factory()
        finally:
            reset_engine()

    def test_reserve_credit_standalone(self, engine, credit, balance):
        credit("CUST-9", 100)
        reservation = engine.reserve_credit("CUST-9", Decimal("40"))
        assert reservation.available == Decimal("60")
        assert balance("CUST-9") == Decimal("40")


class TestJourneys:
    def test_happy_path_to_delivered(self, engine, stock, credit, place_order, stock_level, balance):
        stock("SKU-1", 10)
        credit("CUST-1", 500)
        order = place_order("CUST-1", [("SKU-1", 4, "25.00")])

        for target, role in (
            (OrderStatus.PACKING, Role.PACKER),
            (OrderStatus.READY_FOR_DELIVERY, Role.PACKER),
            (OrderStatus.OUT_FOR_DELIVERY, Role.DRIVER),
            (OrderStatus.DELIVERED, Role.DRIVER),
        ):
            result = engine.transition(order.id, target, role)

        assert result.to_status == OrderStatus.DELIVERED
        assert stock_level("SKU-1") == Decimal("6")
        assert balance("CUST-1") == Decimal("100")

    def test_failed_delivery_goes_back_to_ready(self, engine, confirmed_order, stock_level):
        for target, role in (
            (OrderStatus.PACKING, Role.PACKER),
            (OrderStatus.READY_FOR_DELIVERY, Role.PACKER),
            (OrderStatus.OUT_FOR_DELIVERY, Role.DRIVER),
            (OrderStatus.READY_FOR_DELIVERY, Role.DRIVER),
        ):
            engine.transition(confirmed_order.id, target, role)
        assert stock_level("SKU-A") == Decimal("90")

    def test_backorder_journey(self, engine, stock, credit, place_order, stock_level):
        stock("SKU-1", 2)
        credit("CUST-1", 500)
        order = place_order("CUST-1", [("SKU-1", 5, "10.00")])
        assert order.backorder_status == BackorderStatus.PENDING_APPROVAL

        # Goods arrive; manager approves two units
        engine.backorders.approve(
            order.id,
            [order.lines[0].id],
            Role.MANAGER,
            approved_quantities={order.lines[0].id: Decimal("2")},
        )
        engine.transition(order.id, OrderStatus.PACKING, Role.PACKER)
        result = engine.transition(order.id, OrderStatus.READY_FOR_DELIVERY, Role.PACKER)

        assert result.order.total_amount == Decimal("20")
        assert stock_level("SKU-1") == Decimal("0")

    def test_over_limit_customer_is_refused(self, stock, credit, place_order):
        stock("SKU-1", 10)
        credit("CUST-1", 1000, balance=600)
        with pytest.raises(CreditLimitExceededError):
            place_order("CUST-1", [("SKU-1", 5, "100.00")])
