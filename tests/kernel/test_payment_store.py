"""
Tests for rentals_kernel.services.payment_store -- persistence boundary.

Uses in-memory SQLite (no PostgreSQL required).
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from rentals_kernel.domain.payment import (
    PaymentHistoryEntry,
    PaymentStatus,
    PaymentType,
    ReminderRecord,
    ReminderType,
)
from rentals_kernel.exceptions import (
    OptimisticLockError,
    PaymentNotFoundError,
    TerminalPaymentError,
)
from rentals_kernel.services.payment_store import PaymentFilter, PaymentStore

ACTOR = uuid4()
NOW = datetime(2024, 1, 10, 12, tzinfo=timezone.utc)


class TestReads:
    def test_round_trip_snapshot(self, make_payment, load_payment, embedded_fixed_config):
        created = make_payment(late_fee_config=embedded_fixed_config, description="Jan rent")

        loaded = load_payment(created.payment_id)

        assert loaded.payment_id == created.payment_id
        assert loaded.amount == Decimal("1500.00")
        assert loaded.status == PaymentStatus.LATE
        assert loaded.version == 1
        assert loaded.late_fee_config == embedded_fixed_config
        assert loaded.description == "Jan rent"

    def test_missing_payment_raises(self, session):
        with pytest.raises(PaymentNotFoundError):
            PaymentStore(session).get(uuid4())

    def test_eligible_selection(self, make_payment, session):
        open_one = make_payment()
        make_payment(status=PaymentStatus.PAID)
        make_payment(due_date=None)
        make_payment(deleted_at=NOW)

        ids = PaymentStore(session).find_ids(PaymentFilter(eligible_only=True))

        assert ids == [open_one.payment_id]

    def test_filters_combine(self, make_payment, session):
        early = make_payment(due_date=date(2024, 1, 1))
        make_payment(due_date=date(2024, 1, 20))
        make_payment(due_date=date(2024, 1, 1), payment_type=PaymentType.UTILITY)

        found = PaymentStore(session).find(PaymentFilter(
            payment_types=(PaymentType.RENT,),
            due_on_or_before=date(2024, 1, 9),
            due_on_or_after=date(2023, 12, 1),
        ))

        assert [p.payment_id for p in found] == [early.payment_id]

    def test_ordered_by_due_date(self, make_payment, session):
        later = make_payment(due_date=date(2024, 2, 1))
        sooner = make_payment(due_date=date(2024, 1, 1))

        ids = PaymentStore(session).find_ids()

        assert ids == [sooner.payment_id, later.payment_id]

    def test_children_by_parent(self, make_payment, session):
        parent = make_payment()
        child = make_payment(
            payment_type=PaymentType.LATE_FEE,
            status=PaymentStatus.PENDING,
            parent_payment_id=parent.payment_id,
        )

        found = PaymentStore(session).find(PaymentFilter(parent_payment_id=parent.payment_id))

        assert [p.payment_id for p in found] == [child.payment_id]

    def test_summary_by_status(self, make_payment, session):
        make_payment(amount="1000.00")
        make_payment(amount="500.00")
        make_payment(amount="200.00", status=PaymentStatus.PAID, amount_paid=Decimal("200.00"))

        rows = {row.status: row for row in PaymentStore(session).summarize_by_status()}

        assert rows[PaymentStatus.LATE].count == 2
        assert rows[PaymentStatus.LATE].total_amount == Decimal("1500")
        assert rows[PaymentStatus.PAID].total_paid == Decimal("200")


class TestConditionalUpdate:
    def test_increments_version(self, make_payment, session):
        payment = make_payment()
        store = PaymentStore(session)

        updated = store.conditional_update(
            payment.payment_id, 1, {"status": PaymentStatus.SEVERELY_OVERDUE}, actor_id=ACTOR,
        )

        assert updated.version == 2
        assert updated.status == PaymentStatus.SEVERELY_OVERDUE

    def test_stale_version_raises_optimistic_lock(self, make_payment, session):
        payment = make_payment()
        store = PaymentStore(session)
        store.conditional_update(payment.payment_id, 1, {"notes": "first"}, actor_id=ACTOR)

        with pytest.raises(OptimisticLockError) as exc_info:
            store.conditional_update(payment.payment_id, 1, {"notes": "second"}, actor_id=ACTOR)

        assert exc_info.value.expected_version == 1
        assert store.get(payment.payment_id).notes == "first"

    def test_terminal_row_refused(self, make_payment, session):
        payment = make_payment(status=PaymentStatus.PAID)

        with pytest.raises(TerminalPaymentError):
            PaymentStore(session).conditional_update(
                payment.payment_id, 1, {"notes": "x"}, actor_id=ACTOR,
            )

    def test_terminal_row_allowed_when_not_refused(self, make_payment, session):
        payment = make_payment(status=PaymentStatus.PAID)

        updated = PaymentStore(session).conditional_update(
            payment.payment_id, 1, {"notes": "x"}, actor_id=ACTOR, refuse_terminal=False,
        )

        assert updated.notes == "x"

    def test_missing_row_raises_not_found(self, session):
        with pytest.raises(PaymentNotFoundError):
            PaymentStore(session).conditional_update(uuid4(), 1, {"notes": "x"}, actor_id=ACTOR)

    def test_unpatchable_field_rejected(self, make_payment, session):
        payment = make_payment()

        with pytest.raises(ValueError, match="not patchable"):
            PaymentStore(session).conditional_update(
                payment.payment_id, 1, {"amount": Decimal("1")}, actor_id=ACTOR,
            )


class TestAppendOnly:
    def test_history_and_reminders_sequence(self, make_payment, session):
        payment = make_payment()
        store = PaymentStore(session)

        store.append_history(
            payment.payment_id,
            PaymentHistoryEntry(Decimal("100.00"), "ach", NOW, "ref-1"),
            actor_id=ACTOR,
        )
        store.append_history(
            payment.payment_id,
            PaymentHistoryEntry(Decimal("50.00"), "card", NOW),
            actor_id=ACTOR,
        )
        store.append_reminder(
            payment.payment_id,
            ReminderRecord(ReminderType.OVERDUE, NOW, "email,sms", "payment_overdue_1_day"),
            actor_id=ACTOR,
        )

        loaded = store.get(payment.payment_id)
        assert [h.amount for h in loaded.payment_history] == [Decimal("100"), Decimal("50")]
        assert loaded.payment_history[0].reference == "ref-1"
        (reminder,) = loaded.reminders_sent
        assert reminder.reminder_type == ReminderType.OVERDUE
        assert reminder.channel == "email,sms"
        # Appends never touch the version
        assert loaded.version == 1
