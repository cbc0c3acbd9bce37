"""
Tests for structured JSON logging.

Covers:
- LogContext set/bind/clear semantics
- StructuredFormatter output: envelope, extras, exceptions, Decimal/UUID/date values
- configure_logging idempotence
"""

import json
import logging
import sys
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.exceptions import PeriodClosedError
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


def _format(record: logging.LogRecord) -> dict:
    return json.loads(StructuredFormatter().format(record))


def _record(msg="event", level=logging.INFO, exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord("stock_kernel.test", level, __file__, 1, msg, (), exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    def test_set_and_clear(self):
        LogContext.set(actor_id="u1", period_id=None)
        assert LogContext.get_all() == {"actor_id": "u1"}
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(tenant="x")

    def test_bind_restores_previous_values(self):
        LogContext.set(location_id="KIT")
        with LogContext.bind(location_id="STR", document_no="DEL-2025-001"):
            assert LogContext.get_all() == {"location_id": "STR", "document_no": "DEL-2025-001"}
        assert LogContext.get_all() == {"location_id": "KIT"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(actor_id="u2"):
                raise RuntimeError("boom")
        assert "actor_id" not in LogContext.get_all()

    def test_values_are_stringified(self):
        actor = uuid4()
        with LogContext.bind(actor_id=actor):
            assert LogContext.get_all()["actor_id"] == str(actor)


class TestStructuredFormatter:
    def test_envelope(self):
        payload = _format(_record("delivery_posted", level=logging.WARNING))
        assert payload["message"] == "delivery_posted"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "stock_kernel.test"
        assert "ts" in payload

    def test_context_and_extras(self):
        item_id = uuid4()
        with LogContext.bind(period_id="P1"):
            payload = _format(
                _record(item_id=item_id, price=Decimal("5.5000"), on=date(2025, 1, 10), codes=("KIT",))
            )

        assert payload["period_id"] == "P1"
        assert payload["item_id"] == str(item_id)
        assert payload["price"] == "5.5000"
        assert payload["on"] == "2025-01-10"
        assert payload["codes"] == ["KIT"]

    def test_exception_fields(self):
        try:
            raise PeriodClosedError("2025-01", "CLOSED", "2025-01-20")
        except PeriodClosedError:
            payload = _format(_record(level=logging.ERROR, exc_info=sys.exc_info()))

        assert payload["exc_type"] == "PeriodClosedError"
        assert payload["exc_code"] == PeriodClosedError.code
        assert payload["exc_period_code"] == "2025-01"
        assert payload["exc_status"] == "CLOSED"
        assert "Traceback" in payload["traceback"]


class TestConfigureLogging:
    def test_idempotent(self):
        reset_logging()
        stream = StringIO()
        configure_logging(stream=stream)
        configure_logging(stream=stream)

        root = logging.getLogger("stock_kernel")
        assert len(root.handlers) == 1
        assert root.propagate is False

        get_logger("services.test").info("hello", extra={"n": 1})
        (line,) = stream.getvalue().strip().splitlines()
        assert json.loads(line)["n"] == 1

    def test_get_logger_namespace(self):
        assert get_logger("engines.wac").name == "stock_kernel.engines.wac"
