"""CreditGuard: reservation, release and the replace-on-recheck rule."""

from decimal import Decimal

import pytest

from fulfillment_kernel.exceptions import (
    CreditLimitExceededError,
    CreditLimitNotFoundError,
)
from fulfillment_kernel.services.credit_guard import CreditGuard


@pytest.fixture
def guard():
    return CreditGuard()


@pytest.fixture
def customer(session, guard):
    guard.set_limit(session, "CUST-1", Decimal("1000"), balance=Decimal("600"))
    return "CUST-1"


class TestCheckAndReserve:
    def test_reserve_within_limit(self, session, guard, customer):
        reservation = guard.check_and_reserve(session, customer, Decimal("400"))
        assert reservation.previous_balance == Decimal("600")
        assert reservation.new_balance == Decimal("1000")
        assert reservation.available == Decimal("0")

    def test_exceeding_limit_raises_and_leaves_balance(self, session, guard, customer):
        with pytest.raises(CreditLimitExceededError) as exc_info:
            guard.check_and_reserve(session, customer, Decimal("500"))

        err = exc_info.value
        assert err.code == "CREDIT_LIMIT_EXCEEDED"
        assert err.limit == Decimal("1000")
        assert err.current_balance == Decimal("600")
        assert err.requested == Decimal("500")
        assert err.available == Decimal("400")
        assert guard.available_credit(session, customer) == Decimal("400")

    def test_replacing_swaps_previous_hold(self, session, guard, customer):
        # 600 already held for this order; re-check with new total 900
        reservation = guard.check_and_reserve(
            session, customer, Decimal("900"), replacing=Decimal("600")
        )
        assert reservation.new_balance == Decimal("900")

    def test_replacing_still_enforces_limit(self, session, guard, customer):
        with pytest.raises(CreditLimitExceededError):
            guard.check_and_reserve(
                session, customer, Decimal("1100"), replacing=Decimal("600")
            )

    def test_unknown_customer(self, session, guard):
        with pytest.raises(CreditLimitNotFoundError):
            guard.check_and_reserve(session, "NOBODY", Decimal("1"))


class TestRelease:
    def test_release_reduces_balance(self, session, guard, customer):
        assert guard.release(session, customer, Decimal("100")) == Decimal("500")

    def test_release_never_goes_negative(self, session, guard, customer):
        assert guard.release(session, customer, Decimal("5000")) == Decimal("0")


class TestSetLimit:
    def test_update_keeps_balance(self, session, guard, customer):
        guard.set_limit(session, customer, Decimal("2000"))
        assert guard.available_credit(session, customer) == Decimal("1400")

    def test_negative_limit_rejected(self, session, guard):
        with pytest.raises(ValueError):
            guard.set_limit(session, "CUST-2", Decimal("-1"))
