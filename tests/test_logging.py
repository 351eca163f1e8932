"""Structured logging: JSON shape, context propagation and error payloads."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from fulfillment_kernel.domain.transitions import OrderStatus, Role
from fulfillment_kernel.exceptions import (
    CreditLimitExceededError,
    PersistenceUnavailableError,
    error_payload,
)
from fulfillment_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def _format(record_fn):
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = get_logger("tests.logging")
    logger.addHandler(handler)
    try:
        record_fn(logger)
    finally:
        logger.removeHandler(handler)
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestStructuredFormatter:
    def test_extra_fields_and_types_serialize(self):
        order_id = uuid4()
        records = _format(
            lambda log: log.info(
                "something_happened",
                extra={"order_id": order_id, "amount": Decimal("1.50"), "status": OrderStatus.PACKING},
            )
        )
        assert records[0]["message"] == "something_happened"
        assert records[0]["logger"] == "fulfillment_kernel.tests.logging"
        assert records[0]["order_id"] == str(order_id)
        assert records[0]["amount"] == "1.50"
        assert records[0]["status"] == "packing"

    def test_context_fields_included(self):
        with LogContext.bind(order_id="abc", actor_role="packer"):
            records = _format(lambda log: log.info("inside"))
        assert records[0]["order_id"] == "abc"
        assert records[0]["actor_role"] == "packer"
        assert "order_id" not in _format(lambda log: log.info("outside"))[0]

    def test_kernel_error_fields_on_exception(self):
        def log_error(log):
            try:
                raise CreditLimitExceededError("C-1", Decimal("10"), Decimal("5"), Decimal("6"))
            except CreditLimitExceededError:
                log.exception("credit_failed")

        record = _format(log_error)[0]
        assert record["exc_code"] == "CREDIT_LIMIT_EXCEEDED"
        assert record["exc_customer_id"] == "C-1"
        assert "traceback" in record
        assert record["exc_retryable"] is False

    def test_plain_exception_has_type_only(self):
        def log_error(log):
            try:
                raise ConnectionError("refused")
            except ConnectionError:
                log.exception("send_failed")

        record = _format(log_error)[0]
        assert record["exc_type"] == "ConnectionError"
        assert "exc_code" not in record


class TestLogContext:
    def test_nested_bind_layers_and_restores(self):
        with LogContext.bind(order_id="abc", actor_role="system"):
            with LogContext.bind(actor_role="packer", actor_id=None):
                assert LogContext.get_all() == {"order_id": "abc", "actor_role": "packer"}
            assert LogContext.get_all() == {"order_id": "abc", "actor_role": "system"}
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="customer_id"):
            with LogContext.bind(customer_id="C-1"):
                pass
        assert LogContext.get_all() == {}


class TestErrorPayload:
    def test_client_error_carries_message(self):
        payload = error_payload(
            CreditLimitExceededError("C-1", Decimal("10"), Decimal("5"), Decimal("6"))
        )
        assert payload["code"] == "CREDIT_LIMIT_EXCEEDED"
        assert "C-1" in payload["message"]
        assert payload["client_error"] is True
        assert payload["retryable"] is False

    def test_persistence_error_hides_detail(self):
        payload = error_payload(PersistenceUnavailableError("order_transition", "disk I/O error"))
        assert payload["code"] == "PERSISTENCE_UNAVAILABLE"
        assert "disk" not in payload["message"]
        assert payload["retryable"] is True


class TestEngineLogging:
    def test_transition_logs_carry_order_context(self, engine, confirmed_order, captured_logs):
        engine.transition(confirmed_order.id, OrderStatus.PACKING, Role.PACKER)
        done = [r for r in captured_logs() if r["message"] == "order_transitioned"]
        assert done[-1]["order_id"] == str(confirmed_order.id)
        assert done[-1]["actor_role"] == "packer"
        assert done[-1]["from_status"] == "confirmed"
        assert done[-1]["to_status"] == "packing"

    def test_context_cleared_after_transition(self, engine, confirmed_order):
        engine.transition(confirmed_order.id, OrderStatus.PACKING, Role.PACKER)
        assert LogContext.get_all() == {}
