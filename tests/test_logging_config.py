"""Tests for structured JSON logging."""

import io
import json
import logging
import sys

from shared.logging_config import JsonFormatter, ServiceFilter, setup_logging


def _record(message="Cart hydrated", **extra):
    record = logging.LogRecord("services.cart_service.cart_store", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_basic_fields(self):
        data = json.loads(JsonFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "services.cart_service.cart_store"
        assert data["message"] == "Cart hydrated"
        assert data["timestamp"].endswith("+05:30")

    def test_context_fields(self):
        data = json.loads(JsonFormatter().format(_record(session_id="sess-42", order_id="VD2610180001")))
        assert data["session_id"] == "sess-42"
        assert data["order_id"] == "VD2610180001"
        assert "correlation_id" not in data

    def test_exception(self):
        try:
            raise ValueError("bad cart")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()
        data = json.loads(JsonFormatter().format(record))
        assert "ValueError: bad cart" in data["exception"]


class TestSetupLogging:
    def test_service_filter_stamps_name(self):
        record = _record()
        assert ServiceFilter("cart-service").filter(record)
        assert record.service_name == "cart-service"

    def test_repeated_setup_keeps_one_handler(self):
        setup_logging("order-service")
        setup_logging("order-service", level="DEBUG")
        root = logging.getLogger()
        handlers = [h for h in root.handlers if isinstance(h.formatter, JsonFormatter)]
        assert len(handlers) == 1
        assert root.level == logging.DEBUG
        setup_logging("order-service")

    def test_writes_json_lines(self):
        setup_logging("payment-service")
        handler = next(h for h in logging.getLogger().handlers if isinstance(h.formatter, JsonFormatter))
        stream = io.StringIO()
        previous = handler.setStream(stream)
        try:
            logging.getLogger("services.payment_service").info("Payment started", extra={"order_id": "VD2610180001"})
        finally:
            handler.setStream(previous)
        data = json.loads(stream.getvalue().splitlines()[-1])
        assert data["service_name"] == "payment-service"
        assert data["order_id"] == "VD2610180001"
