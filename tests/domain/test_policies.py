"""Side-effect policy predicates."""

from datetime import date
from decimal import Decimal

import pytest

from fulfillment_kernel.domain import policies
from fulfillment_kernel.domain.dtos import LineItemSpec, TransitionOptions
from fulfillment_kernel.domain.transitions import OrderStatus

TODAY = date(2024, 1, 1)


class TestStockPolicies:
    def test_only_ready_for_delivery_consumes(self):
        consuming = {s for s in OrderStatus if policies.requires_stock_consumption(s)}
        assert consuming == {OrderStatus.READY_FOR_DELIVERY}

    @pytest.mark.parametrize(
        "current",
        [OrderStatus.READY_FOR_DELIVERY, OrderStatus.OUT_FOR_DELIVERY],
    )
    def test_cancel_after_consumption_restores(self, current):
        assert policies.should_restore_stock(current, OrderStatus.CANCELLED, True)

    def test_cancel_from_delivered_keeps_stock_out(self):
        assert not policies.should_restore_stock(
            OrderStatus.DELIVERED, OrderStatus.CANCELLED, True
        )

    def test_nothing_to_restore_when_not_consumed(self):
        assert not policies.should_restore_stock(
            OrderStatus.CONFIRMED, OrderStatus.CANCELLED, False
        )

    def test_reverting_to_packing_keeps_consumption(self):
        assert not policies.should_restore_stock(
            OrderStatus.READY_FOR_DELIVERY, OrderStatus.PACKING, True
        )


class TestCreditPolicies:
    def test_reserve_only_on_backorder_approval(self):
        assert policies.requires_credit_reservation(
            OrderStatus.AWAITING_APPROVAL, OrderStatus.CONFIRMED
        )
        assert not policies.requires_credit_reservation(
            OrderStatus.PACKING, OrderStatus.CONFIRMED
        )

    def test_release_on_cancel_with_reservation(self):
        assert policies.should_release_credit(OrderStatus.CANCELLED, Decimal("10"))
        assert not policies.should_release_credit(OrderStatus.CANCELLED, Decimal("0"))
        assert not policies.should_release_credit(OrderStatus.DELIVERED, Decimal("10"))


class TestPackingPolicies:
    def test_session_opens_on_packing(self):
        assert policies.opens_packing_session(OrderStatus.PACKING)
        assert not policies.opens_packing_session(OrderStatus.CONFIRMED)

    def test_session_closes_on_leaving_packing(self):
        for target in (
            OrderStatus.READY_FOR_DELIVERY,
            OrderStatus.CONFIRMED,
            OrderStatus.CANCELLED,
        ):
            assert policies.closes_packing_session(OrderStatus.PACKING, target)
        assert not policies.closes_packing_session(
            OrderStatus.READY_FOR_DELIVERY, OrderStatus.PACKING
        )

    def test_progress_discarded_on_revert_or_cancel_only(self):
        assert policies.discards_packing_progress(OrderStatus.PACKING, OrderStatus.CONFIRMED)
        assert policies.discards_packing_progress(OrderStatus.PACKING, OrderStatus.CANCELLED)
        assert not policies.discards_packing_progress(
            OrderStatus.PACKING, OrderStatus.READY_FOR_DELIVERY
        )

    @pytest.mark.parametrize(
        "target,is_system,expected",
        [
            (OrderStatus.READY_FOR_DELIVERY, False, "completed"),
            (OrderStatus.CANCELLED, False, "cancelled"),
            (OrderStatus.CONFIRMED, True, "timed_out"),
            (OrderStatus.CONFIRMED, False, "reverted"),
        ],
    )
    def test_session_end_reason(self, target, is_system, expected):
        assert policies.session_end_reason(target, is_system) == expected


class TestCrossDay:
    def test_same_day_is_not_cross_day(self):
        assert not policies.is_cross_day(OrderStatus.CONFIRMED, OrderStatus.PACKING, TODAY, TODAY)

    def test_no_delivery_date_is_not_cross_day(self):
        assert not policies.is_cross_day(OrderStatus.CONFIRMED, OrderStatus.PACKING, None, TODAY)

    def test_future_delivery_is_cross_day_on_packing_edges(self):
        tomorrow = date(2024, 1, 2)
        assert policies.is_cross_day(OrderStatus.CONFIRMED, OrderStatus.PACKING, tomorrow, TODAY)
        assert policies.is_cross_day(
            OrderStatus.PACKING, OrderStatus.READY_FOR_DELIVERY, tomorrow, TODAY
        )
        assert not policies.is_cross_day(
            OrderStatus.READY_FOR_DELIVERY, OrderStatus.CANCELLED, tomorrow, TODAY
        )

    def test_driver_return_is_not_packing(self):
        yesterday = date(2023, 12, 31)
        assert not policies.is_cross_day(
            OrderStatus.OUT_FOR_DELIVERY, OrderStatus.READY_FOR_DELIVERY, yesterday, TODAY
        )

    def test_admin_override_acknowledges(self):
        assert TransitionOptions(admin_override=True).acknowledges_cross_day
        assert TransitionOptions(allow_cross_day_packing=True).acknowledges_cross_day
        assert not TransitionOptions().acknowledges_cross_day


class TestLineItemSpec:
    def test_line_total(self):
        spec = LineItemSpec("SKU-1", Decimal("3"), Decimal("2.50"))
        assert spec.line_total == Decimal("7.50")

    @pytest.mark.parametrize(
        "product_id,quantity,price",
        [
            ("", Decimal("1"), Decimal("1")),
            ("SKU-1", Decimal("0"), Decimal("1")),
            ("SKU-1", Decimal("-1"), Decimal("1")),
            ("SKU-1", Decimal("1"), Decimal("-0.01")),
        ],
    )
    def test_invalid_specs_rejected(self, product_id, quantity, price):
        with pytest.raises(ValueError):
            LineItemSpec(product_id, quantity, price)
