"""Tests for the structured logging system (rentals_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from rentals_kernel.exceptions import OptimisticLockError
from rentals_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "rentals.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "late_fee_applied", extra={"amount": Decimal("50.00"), "days_overdue": 9},
        )

        record = _parse_log(stream)
        assert record["amount"] == "50.00"
        assert record["days_overdue"] == 9

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(run_id="run-1", stage="late_fees")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["run_id"] == "run-1"
        assert record["stage"] == "late_fees"

    def test_rentals_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise OptimisticLockError("Payment", "p-1", 3)
        except OptimisticLockError:
            get_logger("test").error("write_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "OPTIMISTIC_LOCK_CONFLICT"
        assert record["exc_type"] == "OptimisticLockError"
        assert record["exc_entity_id"] == "p-1"
        assert record["exc_expected_version"] == 3
        assert "traceback" in record

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"payment_id": uid})

        assert _parse_log(stream)["payment_id"] == str(uid)

    def test_debug_suppressed_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        log = get_logger("test")
        log.info("first")
        log.warning("second", extra={"k": "v"})
        log.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]

    def test_configure_is_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)
        get_logger("test").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", payment_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "payment_id": "y"}

    def test_clear(self):
        LogContext.set(run_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(stage="outer")
        with LogContext.bind(stage="inner"):
            assert LogContext.get_all()["stage"] == "inner"
        assert LogContext.get_all()["stage"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(payment_id="temp"):
            assert LogContext.get_all()["payment_id"] == "temp"
        assert "payment_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(unknown="x", run_id="r"):
            assert LogContext.get_all() == {"run_id": "r"}
