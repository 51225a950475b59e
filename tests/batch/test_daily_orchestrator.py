"""
Tests for rentals_batch.orchestrator -- the nightly run end to end.
"""

from datetime import date
from decimal import Decimal

import pytest

from rentals_config import get_active_config
from rentals_kernel.domain.payment import PaymentStatus
from rentals_kernel.exceptions import OptimisticLockError

from rentals_batch.orchestrator import (
    STAGE_LATE_FEES,
    STAGE_STATUS,
    DailyOrchestrator,
)
from rentals_services.collaborators import NotificationOutcome
from rentals_services.communication_service import PaymentCommunicationService
from rentals_services.late_fee_service import LateFeeService

S = PaymentStatus


class CapturingSender:
    def __init__(self):
        self.templates = []

    def send(self, payment_id, template_id, channels):
        self.templates.append((template_id, tuple(channels)))
        return NotificationOutcome(success=True)


class ExplodingStatusService:
    def __init__(self, error):
        self._error = error

    def process_automated_transitions(self):
        raise self._error


@pytest.fixture
def sender():
    return CapturingSender()


@pytest.fixture
def orchestrator(session_factory, clock, sender):
    return DailyOrchestrator.from_config(
        session_factory, get_active_config(), clock=clock, sender=sender,
    )


class TestDailyRun:
    def test_full_run(self, orchestrator, sender, make_payment, load_payment):
        overdue = make_payment(status=S.GRACE_PERIOD, due_date=date(2024, 1, 1))
        just_due = make_payment(status=S.DUE_TODAY, due_date=date(2024, 1, 9))

        result = orchestrator.run_daily_processing()

        assert result.overall_success
        assert result.critical_errors == ()
        assert result.status_update.changed == 2
        assert result.late_fees.fees_applied == 1
        assert result.late_fees.total_fees == Decimal("50.00")
        assert load_payment(overdue.payment_id).status == S.LATE
        assert load_payment(overdue.payment_id).late_fee_applied == Decimal("50.00")
        assert load_payment(just_due.payment_id).status == S.GRACE_PERIOD
        # SMS is disabled in the default configuration set
        assert ("payment_overdue_1_day", ("email",)) in sender.templates
        assert result.communication.failed == 0

    def test_run_is_logged_under_one_run_id(self, orchestrator, captured_logs):
        result = orchestrator.run_daily_processing()

        records = captured_logs()
        (completed,) = [r for r in records if r["message"] == "daily_run_completed"]
        assert completed["run_id"] == result.run_id
        assert completed["overall_success"] is True
        assert completed["stage"] == "summary"
        assert any(r["message"] == "daily_run_started" for r in records)

    def test_timestamps_come_from_clock(self, orchestrator, clock):
        result = orchestrator.run_daily_processing()

        assert result.started_at == clock.now()
        assert result.completed_at == clock.now()


class TestStageIsolation:
    def _orchestrator(self, session_factory, clock, error):
        return DailyOrchestrator(
            status_service=ExplodingStatusService(error),
            late_fee_service=LateFeeService(session_factory, clock=clock),
            communication_service=PaymentCommunicationService(session_factory, clock=clock),
            clock=clock,
        )

    def test_failed_stage_recorded_and_next_stage_runs(self, session_factory, clock, captured_logs):
        orchestrator = self._orchestrator(session_factory, clock, RuntimeError("db gone"))

        result = orchestrator.run_daily_processing()

        assert not result.overall_success
        (error,) = result.critical_errors
        assert error.stage == STAGE_STATUS
        assert error.error_code == "UNHANDLED_EXCEPTION"
        assert "db gone" in error.message
        assert result.status_update is None
        assert result.late_fees is not None
        assert result.communication is not None
        (failed,) = [r for r in captured_logs() if r["message"] == "daily_stage_failed"]
        assert failed["stage"] == STAGE_STATUS

    def test_error_code_taken_from_domain_exception(self, session_factory, clock):
        error = OptimisticLockError("Payment", "p-1", 1)
        orchestrator = self._orchestrator(session_factory, clock, error)

        result = orchestrator.run_daily_processing()

        assert result.critical_errors[0].error_code == "OPTIMISTIC_LOCK_CONFLICT"

    def test_item_errors_do_not_fail_the_run(self, session_factory, clock, make_payment, fixed_rule):
        class StaleLateFeeService(LateFeeService):
            def _charge(self, session, payment_id, rules, today, dry_run):
                raise OptimisticLockError("Payment", str(payment_id), 1)

        make_payment()
        orchestrator = DailyOrchestrator(
            status_service=ExplodingStatusService(RuntimeError("skip")),
            late_fee_service=StaleLateFeeService(session_factory, rules=[fixed_rule], clock=clock),
            communication_service=PaymentCommunicationService(session_factory, clock=clock),
            clock=clock,
        )

        result = orchestrator.run_daily_processing()

        assert [e.stage for e in result.critical_errors] == [STAGE_STATUS]
        assert len(result.late_fees.errors) == 1
        assert result.item_error_count == 1
        assert STAGE_LATE_FEES not in {e.stage for e in result.critical_errors}
