"""
Pytest fixtures for the rentals test suite.

Provides:
- In-memory SQLite sessions (one shared connection via StaticPool)
- File-backed SQLite session factories for threaded tests
- A DeterministicClock pinned to 2024-01-10 12:00 UTC
- A payment factory that inserts and commits ``Payment`` rows
- Captured JSON log records

Environment Variables:
- RENTALS_TEST_DATABASE_URL: run the DB-backed tests against another
  database (e.g. postgresql://...).  Defaults to in-memory SQLite.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Callable
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from rentals_kernel.db.engine import build_engine, create_tables, drop_tables
from rentals_kernel.domain.clock import DeterministicClock
from rentals_kernel.domain.payment import (
    LateFeeConfig,
    Payment,
    PaymentStatus,
    PaymentType,
)
from rentals_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from rentals_kernel.services.payment_store import PaymentStore

from rentals_engines.late_fees import FixedFee, LateFeeRule


# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# 2024-01-01 due date is 9 days overdue at this instant
DEFAULT_NOW = datetime(2024, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


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
    Capture rentals logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, late_fee_service):
            late_fee_service.process_late_fees()
            logs = captured_logs()
            assert any(r["message"] == "late_fee_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("rentals")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(DEFAULT_NOW)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    url = os.environ.get("RENTALS_TEST_DATABASE_URL", "sqlite://")
    eng = build_engine(url)
    create_tables(eng)
    yield eng
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite so each thread gets its own connection."""
    eng = build_engine(f"sqlite:///{tmp_path / 'rentals_test.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def file_session_factory(file_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=file_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Payment fixtures
# =============================================================================


def build_payment(
    amount: Decimal | str = "1500.00",
    due_date: date | None = date(2024, 1, 1),
    status: PaymentStatus = PaymentStatus.LATE,
    payment_type: PaymentType = PaymentType.RENT,
    **overrides,
) -> Payment:
    """Unsaved payment snapshot with sensible defaults."""
    return Payment(
        payment_id=overrides.pop("payment_id", uuid4()),
        payment_type=payment_type,
        amount=Decimal(str(amount)),
        due_date=due_date,
        status=status,
        tenant_id=overrides.pop("tenant_id", uuid4()),
        **overrides,
    )


def _insert(factory: sessionmaker[Session], payment: Payment) -> Payment:
    sess = factory()
    try:
        created = PaymentStore(sess).create(payment, actor_id=TEST_ACTOR_ID)
        sess.commit()
        return created
    finally:
        sess.close()


@pytest.fixture
def make_payment(session_factory) -> Callable[..., Payment]:
    """Insert and commit a payment; accepts ``build_payment`` arguments."""

    def _make(**kwargs) -> Payment:
        return _insert(session_factory, build_payment(**kwargs))

    return _make


@pytest.fixture
def make_file_payment(file_session_factory) -> Callable[..., Payment]:

    def _make(**kwargs) -> Payment:
        return _insert(file_session_factory, build_payment(**kwargs))

    return _make


@pytest.fixture
def load_payment(session_factory) -> Callable[[UUID], Payment]:
    """Fresh snapshot read in its own session."""

    def _load(payment_id: UUID) -> Payment:
        sess = session_factory()
        try:
            return PaymentStore(sess).get(payment_id)
        finally:
            sess.close()

    return _load


@pytest.fixture
def fixed_rule() -> LateFeeRule:
    """Fixed $50 after a 5-day grace period, capped at $200."""
    return LateFeeRule(
        rule_id="standard_rent_late_fee",
        name="Standard Rent Late Fee",
        fee_structure=FixedFee(Decimal("50.00")),
        grace_period_days=5,
        max_amount=Decimal("200.00"),
        applicable_payment_types=frozenset({"rent"}),
    )


@pytest.fixture
def embedded_fixed_config() -> LateFeeConfig:
    return LateFeeConfig(
        enabled=True,
        grace_period_days=5,
        fee_amount=Decimal("75.00"),
    )


@pytest.fixture
def payment_builder() -> Callable[..., Payment]:
    """``build_payment`` for pure engine tests that need no database."""
    return build_payment
