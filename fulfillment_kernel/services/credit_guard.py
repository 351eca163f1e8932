"""
CreditGuard -- serialized reservation of customer credit.

Responsibility:
    Sole writer of ``CreditLimit.current_balance``.  Checks an order total
    against the customer's remaining credit and reserves it in the same
    transaction, or gives it back on cancellation.

Architecture position:
    Kernel > Services -- imperative shell.  Called by OrderStateMachine
    and OrderService inside their transactions; never commits.

Invariants enforced:
    - current_balance <= limit after every reservation.  Concurrent
      reservations for one customer serialize on the CreditLimit row
      (``SELECT ... FOR UPDATE``), with the version column as backstop.
    - current_balance never goes below zero on release.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.dtos import CreditReservation
from fulfillment_kernel.exceptions import (
    CreditLimitExceededError,
    CreditLimitNotFoundError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.credit import CreditLimitModel

logger = get_logger("services.credit_guard")

ZERO = Decimal("0")


class CreditGuard:
    """
    Credit checks against locked CreditLimit rows.

    ``replacing`` on ``check_and_reserve`` swaps an amount already held
    for the same order for the new total in one step, so a re-check after
    a total change never double-counts the order.
    """

    def check_and_reserve(
        self,
        session: Session,
        customer_id: str,
        order_total: Decimal,
        *,
        replacing: Decimal = ZERO,
    ) -> CreditReservation:
        """
        Reserve ``order_total`` against the customer's limit.

        Raises:
            CreditLimitNotFoundError: The customer has no credit row.
            CreditLimitExceededError: balance - replacing + total > limit.
        """
        order_total = Decimal(order_total)
        replacing = Decimal(replacing)
        credit = self._lock(session, customer_id)

        limit = Decimal(credit.limit)
        balance = Decimal(credit.current_balance)
        base = max(balance - replacing, ZERO)
        new_balance = base + order_total

        if new_balance > limit:
            logger.warning(
                "credit_limit_exceeded",
                extra={
                    "customer_id": customer_id,
                    "limit": str(limit),
                    "balance": str(base),
                    "requested": str(order_total),
                },
            )
            raise CreditLimitExceededError(customer_id, limit, base, order_total)

        credit.current_balance = new_balance
        session.flush()
        logger.info(
            "credit_reserved",
            extra={
                "customer_id": customer_id,
                "requested": str(order_total),
                "replaced": str(replacing),
                "balance": str(new_balance),
            },
        )
        return CreditReservation(
            customer_id=customer_id,
            limit=limit,
            previous_balance=balance,
            new_balance=new_balance,
        )

    def release(self, session: Session, customer_id: str, amount: Decimal) -> Decimal:
        """Give back ``amount``; returns the new balance."""
        amount = Decimal(amount)
        credit = self._lock(session, customer_id)
        balance = Decimal(credit.current_balance)
        new_balance = max(balance - amount, ZERO)
        credit.current_balance = new_balance
        session.flush()
        logger.info(
            "credit_released",
            extra={
                "customer_id": customer_id,
                "amount": str(amount),
                "balance": str(new_balance),
            },
        )
        return new_balance

    def available_credit(self, session: Session, customer_id: str) -> Decimal:
        credit = session.execute(
            select(CreditLimitModel).where(CreditLimitModel.customer_id == customer_id)
        ).scalar_one_or_none()
        if credit is None:
            raise CreditLimitNotFoundError(customer_id)
        return credit.available

    def _lock(self, session: Session, customer_id: str) -> CreditLimitModel:
        credit = session.execute(
            select(CreditLimitModel)
            .where(CreditLimitModel.customer_id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if credit is None:
            raise CreditLimitNotFoundError(customer_id)
        return credit

    def set_limit(
        self,
        session: Session,
        customer_id: str,
        limit: Decimal,
        *,
        balance: Decimal | None = None,
    ) -> CreditLimitModel:
        """Create or change a customer's limit.

        The balance is left as is unless ``balance`` is given (opening
        balances carried over from another system).
        """
        limit = Decimal(limit)
        if limit < 0:
            raise ValueError(f"credit limit must not be negative, got {limit}")
        credit = session.execute(
            select(CreditLimitModel)
            .where(CreditLimitModel.customer_id == customer_id)
            .with_for_update()
        ).scalar_one_or_none()
        if credit is None:
            credit = CreditLimitModel(customer_id=customer_id, limit=limit, current_balance=ZERO)
            session.add(credit)
        else:
            credit.limit = limit
        if balance is not None:
            credit.current_balance = Decimal(balance)
        session.flush()
        logger.info("credit_limit_set", extra={"customer_id": customer_id, "limit": str(limit)})
        return credit
