"""Tests for the structured logging system (stock_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.domain.ledger import TransactionType
from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    """JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "stock_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("stock_moved", extra={"quantity": 5, "mode": "transactional"})

        record = _parse_log(stream)
        assert record["quantity"] == 5
        assert record["mode"] == "transactional"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", transfer_id="trf-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["transfer_id"] == "trf-1"

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        product_id = uuid4()
        try:
            raise InsufficientStockError(product_id, 10, 3)
        except InsufficientStockError:
            get_logger("test").error("stock_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_requested"] == 10
        assert record["exc_available"] == 3
        assert record["exc_product_id"] == str(product_id)
        assert "traceback" in record

    def test_uuid_decimal_and_enum_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "typed",
            extra={"entry_id": uid, "value": Decimal("12.50"), "type": TransactionType.SALE},
        )

        record = _parse_log(stream)
        assert record["entry_id"] == str(uid)
        assert record["value"] == "12.50"
        assert record["type"] == "sale"

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


class TestLogContext:
    """Context propagation."""

    def test_set_and_clear(self):
        LogContext.set(correlation_id="x", tenant_id="t")
        assert LogContext.get_all() == {"correlation_id": "x", "tenant_id": "t"}
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(transfer_id="outer")
        with LogContext.bind(transfer_id="inner"):
            assert LogContext.get_all()["transfer_id"] == "inner"
        assert LogContext.get_all()["transfer_id"] == "outer"

    def test_bind_converts_uuids_to_str(self):
        tenant = uuid4()
        with LogContext.bind(tenant_id=tenant, product_id=None):
            ctx = LogContext.get_all()
        assert ctx == {"tenant_id": str(tenant)}


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("stock_kernel").handlers) == 1

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("services.stock_ledger").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "stock_kernel.services.stock_ledger"
