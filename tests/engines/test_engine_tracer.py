"""
Tests for rentals_engines.tracer -- RENTALS_ENGINE_TRACE records.
"""

from datetime import date
from decimal import Decimal

from rentals_engines.status import calculate_status
from rentals_engines.tracer import compute_input_fingerprint, traced_engine


def _traces(records):
    return [r for r in records if r["message"] == "RENTALS_ENGINE_TRACE"]


def test_engine_call_emits_trace(captured_logs):
    calculate_status(date(2024, 1, 1), date(2024, 1, 10))

    (trace,) = _traces(captured_logs())
    assert trace["engine_name"] == "payment_status"
    assert trace["engine_version"] == "1.0"
    assert len(trace["input_fingerprint"]) == 16
    assert trace["duration_ms"] >= 0


def test_fingerprint_is_deterministic():
    args = {"amount": Decimal("10.00"), "types": frozenset({"b", "a"})}

    first = compute_input_fingerprint(("amount", "types"), args)
    second = compute_input_fingerprint(("amount", "types"), dict(reversed(list(args.items()))))

    assert first == second


def test_fingerprint_depends_on_selected_fields_only():
    base = {"a": 1, "b": 2}

    assert compute_input_fingerprint(("a",), base) == compute_input_fingerprint(("a",), {"a": 1, "b": 3})
    assert compute_input_fingerprint(("a",), base) != compute_input_fingerprint(("a",), {"a": 2})


def test_decorator_preserves_result_and_name(captured_logs):
    @traced_engine("doubler", "2.1", fingerprint_fields=("x",))
    def double(x):
        return x * 2

    assert double(21) == 42
    assert double.__name__ == "double"
    (trace,) = _traces(captured_logs())
    assert trace["engine_name"] == "doubler"
    assert trace["input_fingerprint"] == compute_input_fingerprint(("x",), {"x": 21})
