"""
Tests for PaymentStatusService -- nightly status pass, manual transitions
and statistics.
"""

from datetime import date
from decimal import Decimal

import pytest

from rentals_kernel.domain.payment import PaymentStatus, PaymentType
from rentals_kernel.exceptions import InvalidTransitionError
from rentals_kernel.services.payment_store import PaymentFilter, PaymentStore

from rentals_services.status_service import PaymentStatusService

S = PaymentStatus


@pytest.fixture
def status_service(session_factory, clock):
    return PaymentStatusService(session_factory, clock=clock, chunk_size=2)


def _children(session_factory, parent_id):
    session = session_factory()
    try:
        return PaymentStore(session).find(PaymentFilter(parent_payment_id=parent_id))
    finally:
        session.close()


class TestAutomatedPass:
    def test_moves_payments_along_the_ladder(self, status_service, make_payment, load_payment):
        grace = make_payment(status=S.GRACE_PERIOD, due_date=date(2024, 1, 1))
        upcoming = make_payment(status=S.UPCOMING, due_date=date(2024, 1, 15))
        make_payment(status=S.PAID, amount_paid=Decimal("1500.00"))

        result = status_service.process_automated_transitions()

        assert result.processed == 2
        assert result.changed == 2
        assert result.errors == ()
        assert load_payment(grace.payment_id).status == S.LATE
        assert load_payment(upcoming.payment_id).status == S.DUE_SOON

    def test_second_pass_changes_nothing(self, status_service, make_payment):
        make_payment(status=S.UPCOMING, due_date=date(2024, 1, 15))
        status_service.process_automated_transitions()

        result = status_service.process_automated_transitions()

        assert result.processed == 1
        assert result.changed == 0

    def test_event_driven_statuses_not_selected(self, status_service, make_payment, load_payment):
        partial = make_payment(status=S.PARTIAL, amount_paid=Decimal("100.00"))
        make_payment(status=S.PROCESSING, processor_reference="ch_1")
        make_payment(status=S.FAILED)

        result = status_service.process_automated_transitions()

        assert result.processed == 0
        assert load_payment(partial.payment_id).version == 1

    def test_missed_runs_catch_up(self, status_service, make_payment, load_payment):
        stale = make_payment(status=S.UPCOMING, due_date=date(2023, 11, 1))

        result = status_service.process_automated_transitions()

        (change,) = result.changes
        assert change.to_status == S.SEVERELY_OVERDUE
        assert load_payment(stale.payment_id).status == S.SEVERELY_OVERDUE

    def test_legacy_overdue_inside_grace_window(self, status_service, make_payment, load_payment):
        legacy = make_payment(status=S.OVERDUE, due_date=date(2024, 1, 7))

        result = status_service.process_automated_transitions()

        assert result.errors == ()
        (change,) = result.changes
        assert change.to_status == S.GRACE_PERIOD
        assert load_payment(legacy.payment_id).status == S.GRACE_PERIOD

    def test_entering_late_charges_embedded_fee(
        self, status_service, make_payment, load_payment, session_factory, embedded_fixed_config,
    ):
        payment = make_payment(status=S.GRACE_PERIOD, late_fee_config=embedded_fixed_config)

        result = status_service.process_automated_transitions()

        (change,) = result.changes
        assert change.late_fee_charged == Decimal("75.00")
        origin = load_payment(payment.payment_id)
        assert origin.status == S.LATE
        assert origin.late_fee_applied == Decimal("75.00")
        (child,) = _children(session_factory, payment.payment_id)
        assert child.payment_type == PaymentType.LATE_FEE
        assert child.status == S.PENDING
        assert child.amount == Decimal("75.00")
        assert child.due_date == date(2024, 1, 10)

    def test_status_event_records_rule(self, status_service, make_payment, session):
        payment = make_payment(status=S.GRACE_PERIOD)

        status_service.process_automated_transitions()

        (event,) = PaymentStore(session).events(payment.payment_id)
        assert event.detail["rule"] == "grace_period_to_late"
        assert event.detail["reason"] == "automated_status_update"


class TestManualTransitions:
    def test_cancel(self, status_service, make_payment, load_payment):
        payment = make_payment()

        outcome = status_service.update_payment_status(
            payment.payment_id, S.CANCELLED, reason="lease terminated",
        )

        assert outcome.changed
        assert outcome.rule_name == "cancel"
        assert load_payment(payment.payment_id).status == S.CANCELLED

    def test_derived_target_when_none_given(self, status_service, make_payment, load_payment):
        payment = make_payment(status=S.DUE_TODAY, due_date=date(2024, 1, 8))

        outcome = status_service.update_payment_status(payment.payment_id)

        assert outcome.to_status == S.GRACE_PERIOD
        assert load_payment(payment.payment_id).status == S.GRACE_PERIOD

    def test_invalid_transition_raises_and_writes_nothing(self, status_service, make_payment, load_payment):
        payment = make_payment(status=S.PAID, amount_paid=Decimal("1500.00"))

        with pytest.raises(InvalidTransitionError):
            status_service.update_payment_status(payment.payment_id, S.LATE)

        assert load_payment(payment.payment_id).version == 1

    def test_refund_from_paid(self, status_service, make_payment, load_payment):
        payment = make_payment(status=S.PAID, amount_paid=Decimal("1500.00"))

        status_service.update_payment_status(payment.payment_id, S.REFUNDED, reason="duplicate")

        refunded = load_payment(payment.payment_id)
        assert refunded.status == S.REFUNDED
        assert refunded.amount_paid == Decimal("0")

    def test_undated_payment_needs_target(self, status_service, make_payment):
        payment = make_payment(due_date=None)

        with pytest.raises(ValueError):
            status_service.update_payment_status(payment.payment_id)


class TestStatistics:
    def test_counts_and_outstanding_by_category(self, status_service, make_payment):
        make_payment(amount="1500.00", status=S.LATE)
        make_payment(amount="800.00", status=S.UPCOMING, due_date=date(2024, 2, 1))
        make_payment(amount="200.00", status=S.PAID, amount_paid=Decimal("200.00"))
        make_payment(amount="999.00", status=S.PARTIAL, amount_paid=Decimal("99.00"))

        stats = status_service.status_statistics()

        assert stats.total_count == 4
        assert stats.by_status[S.LATE] == 1
        assert stats.by_category == {
            "upcoming": 1, "overdue": 1, "in_progress": 1, "settled": 1,
        }
        assert stats.outstanding_by_category["overdue"] == Decimal("1500")
        assert stats.outstanding_by_category["in_progress"] == Decimal("900")
        assert stats.total_paid == Decimal("299")
