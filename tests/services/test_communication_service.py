"""
Tests for PaymentCommunicationService -- reminder schedules, delivery and
recording.
"""

from datetime import date
from uuid import UUID

import pytest

from rentals_kernel.domain.payment import PaymentStatus, ReminderType
from rentals_kernel.services.payment_store import PaymentStore

from rentals_services.collaborators import NotificationOutcome
from rentals_services.communication_service import PaymentCommunicationService

S = PaymentStatus


class RecordingSender:
    def __init__(self, outcome=None, error=None):
        self.calls = []
        self._outcome = outcome or NotificationOutcome(success=True)
        self._error = error

    def send(self, payment_id, template_id, channels):
        self.calls.append((payment_id, template_id, tuple(channels)))
        if self._error is not None:
            raise self._error
        return self._outcome


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def communication_service(session_factory, clock, sender):
    return PaymentCommunicationService(session_factory, sender=sender, clock=clock)


class TestSchedules:
    def test_due_reminders_sent_and_recorded(self, communication_service, sender, make_payment, load_payment):
        overdue = make_payment(due_date=date(2024, 1, 9), status=S.GRACE_PERIOD)
        upcoming = make_payment(due_date=date(2024, 1, 17), status=S.UPCOMING)
        make_payment(due_date=date(2024, 1, 1))

        result = communication_service.process_automated_notifications()

        assert result.processed == 3
        assert result.sent == 2
        assert result.failed == 0
        assert sorted(sender.calls) == sorted([
            (str(overdue.payment_id), "payment_overdue_1_day", ("email", "sms")),
            (str(upcoming.payment_id), "payment_reminder_7_days", ("email",)),
        ])
        (record,) = load_payment(overdue.payment_id).reminders_sent
        assert record.reminder_type == ReminderType.OVERDUE
        assert record.channel == "email,sms"
        assert record.template_id == "payment_overdue_1_day"

    def test_same_day_rerun_sends_nothing(self, communication_service, sender, make_payment):
        make_payment(due_date=date(2024, 1, 9))
        communication_service.process_automated_notifications()

        result = communication_service.process_automated_notifications()

        assert result.sent == 0
        assert len(sender.calls) == 1

    def test_disabled_channels_filtered(self, session_factory, clock, sender, make_payment):
        service = PaymentCommunicationService(
            session_factory, sender=sender, clock=clock, enabled_channels={"email"},
        )
        make_payment(due_date=date(2024, 1, 9))

        service.process_automated_notifications()

        ((_, _, channels),) = sender.calls
        assert channels == ("email",)

    def test_terminal_and_undated_payments_skipped(self, communication_service, sender, make_payment):
        make_payment(due_date=date(2024, 1, 9), status=S.PAID)
        make_payment(due_date=None)

        result = communication_service.process_automated_notifications()

        assert result.processed == 0
        assert sender.calls == []

    def test_no_enabled_schedules(self, session_factory, clock, sender, make_payment):
        service = PaymentCommunicationService(session_factory, sender=sender, clock=clock, schedules=())
        make_payment(due_date=date(2024, 1, 9))

        result = service.process_automated_notifications()

        assert (result.processed, result.sent, result.failed) == (0, 0, 0)


class TestDeliveryFailures:
    def test_sender_exception_counted_and_still_recorded(
        self, session_factory, clock, make_payment, load_payment, captured_logs,
    ):
        service = PaymentCommunicationService(
            session_factory, sender=RecordingSender(error=RuntimeError("smtp down")), clock=clock,
        )
        payment = make_payment(due_date=date(2024, 1, 9))

        result = service.process_automated_notifications()

        assert result.sent == 0
        assert result.failed == 1
        (notification,) = result.notifications
        assert notification.error == "smtp down"
        assert len(load_payment(payment.payment_id).reminders_sent) == 1
        assert any(r["message"] == "notification_send_failed" for r in captured_logs())

    def test_unsuccessful_outcome_counted(self, session_factory, clock, make_payment):
        failing = RecordingSender(outcome=NotificationOutcome(success=False, error="bounced"))
        service = PaymentCommunicationService(session_factory, sender=failing, clock=clock)
        make_payment(due_date=date(2024, 1, 9))

        result = service.process_automated_notifications()

        assert result.failed == 1
        assert result.notifications[0].error == "bounced"


class TestDeliveryOrdering:
    def test_reminder_committed_before_send(self, file_session_factory, make_file_payment, clock):
        seen = []

        class CommittedReader:
            def send(self, payment_id, template_id, channels):
                session = file_session_factory()
                try:
                    payment = PaymentStore(session).get(UUID(payment_id))
                    seen.append(len(payment.reminders_sent))
                finally:
                    session.close()
                return NotificationOutcome(success=True)

        make_file_payment(due_date=date(2024, 1, 9))
        service = PaymentCommunicationService(
            file_session_factory, sender=CommittedReader(), clock=clock,
        )

        assert service.process_automated_notifications().sent == 1
        assert seen == [1]

    def test_failed_chunk_commit_sends_nothing(self, session_factory, clock, sender, make_payment, load_payment):
        opened = []

        def factory():
            session = session_factory()
            opened.append(session)
            # the first session selects ids; the next is the chunk
            if len(opened) > 1:
                def commit():
                    raise RuntimeError("disk full")
                session.commit = commit
            return session

        payment = make_payment(due_date=date(2024, 1, 9))
        service = PaymentCommunicationService(factory, sender=sender, clock=clock)

        result = service.process_automated_notifications()

        assert sender.calls == []
        assert result.notifications == ()
        (error,) = result.errors
        assert error.error_code == "CHUNK_COMMIT_FAILED"
        assert load_payment(payment.payment_id).reminders_sent == ()
