"""
Pytest fixtures for the fulfillment engine test suite.

Provides:
- A file-backed SQLite database per test (or PostgreSQL via DATABASE_URL)
- A FulfillmentEngine wired with a DeterministicClock and recording sinks
- Seed helpers for stock, credit limits and orders

Environment Variables:
- DATABASE_URL: optional PostgreSQL URL. When set, tests run against it
  instead of SQLite; tables are dropped and recreated per test.
"""

import json
import logging
import os
import threading
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from fulfillment_config import get_active_config
from fulfillment_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from fulfillment_kernel.domain.clock import DeterministicClock
from fulfillment_kernel.domain.dtos import LineItemSpec
from fulfillment_kernel.domain.transitions import Role
from fulfillment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fulfillment_services import FulfillmentEngine

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture fulfillment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.transition(...)
            logs = captured_logs()
            assert any(r["message"] == "order_transitioned" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fulfillment_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'fulfillment.db'}"


@pytest.fixture
def session_factory(database_url):
    """Fresh schema per test; module-level engine reset afterwards."""
    init_engine_from_url(database_url, busy_timeout_seconds=60.0)
    drop_tables()
    create_tables()
    yield get_session_factory()
    reset_engine()


@pytest.fixture
def session(session_factory):
    """A plain session for tests that drive kernel services directly."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Clock and sinks
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


class RecordingNotifier:
    """Collects every delivered DomainEvent."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def notify(self, event):
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.event_type == event_type]


class RecordingAuditWriter:
    """Collects every TransitionAuditRecord."""

    def __init__(self):
        self.records = []
        self._lock = threading.Lock()

    def write(self, record):
        with self._lock:
            self.records.append(record)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit_writer():
    return RecordingAuditWriter()


# =============================================================================
# Engine
# =============================================================================


@pytest.fixture(scope="session")
def active_config():
    return get_active_config()


@pytest.fixture
def engine(session_factory, active_config, deterministic_clock, notifier, audit_writer):
    """FulfillmentEngine over the per-test database."""
    built = FulfillmentEngine(
        session_factory,
        config=active_config,
        clock=deterministic_clock,
        notifier=notifier,
        audit_writer=audit_writer,
    )
    yield built
    built.stop_monitor(timeout=5.0)


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


# =============================================================================
# Seed helpers
# =============================================================================


@pytest.fixture
def stock(engine):
    """Receive stock: ``stock("SKU-1", 10)``."""

    def _receive(product_id: str, quantity) -> Decimal:
        return engine.receive_stock(product_id, Decimal(str(quantity)))

    return _receive


@pytest.fixture
def credit(engine):
    """Set a credit limit: ``credit("CUST-1", 1000, balance=600)``."""

    def _set(customer_id: str, limit, balance=None) -> None:
        engine.set_credit_limit(
            customer_id,
            Decimal(str(limit)),
            balance=Decimal(str(balance)) if balance is not None else None,
        )

    return _set


@pytest.fixture
def place_order(engine, test_actor_id):
    """
    Create an order from ``(product_id, quantity, unit_price)`` tuples.

    Usage::

        order = place_order("CUST-1", [("SKU-1", 2, "10.00")])
    """

    def _place(customer_id: str, lines, role: Role = Role.SALES, **kwargs):
        specs = [
            LineItemSpec(
                product_id=product_id,
                quantity=Decimal(str(quantity)),
                unit_price=Decimal(str(price)),
            )
            for product_id, quantity, price in lines
        ]
        return engine.orders.create_order(
            customer_id, specs, role, actor_id=kwargs.pop("actor_id", test_actor_id), **kwargs
        )

    return _place


@pytest.fixture
def confirmed_order(stock, credit, place_order):
    """A confirmed order for 10 x SKU-A at 5.00 with plenty of credit."""
    stock("SKU-A", 100)
    credit("CUST-1", 10_000)
    return place_order("CUST-1", [("SKU-A", 10, "5.00")])


@pytest.fixture
def stock_level(engine):
    def _level(product_id: str) -> Decimal:
        with engine.read() as q:
            level = q.get_stock_level(product_id)
        return level if level is not None else Decimal("0")

    return _level


@pytest.fixture
def balance(engine):
    def _balance(customer_id: str) -> Decimal:
        with engine.read() as q:
            return q.get_credit(customer_id).current_balance

    return _balance


@pytest.fixture
def reload(engine):
    def _reload(order_id):
        with engine.read() as q:
            return q.get_order(order_id)

    return _reload
