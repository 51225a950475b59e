"""
rentals_services.communication_service -- Reminder and overdue notifications.

Responsibility:
    Evaluates the reminder schedules against every open payment, sends
    the due notifications through the injected ``NotificationSender`` and
    records each one in ``reminders_sent``.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes ``rentals_engines.reminders``, PaymentStore and
    BatchProcessor; the sender is an external collaborator.

Invariants enforced:
    - A reminder type is sent at most once per payment per UTC day.
    - Reminders are recorded and committed before the sender is called;
      a payment whose chunk fails to commit is not notified.
    - Only payments whose due date falls inside the schedules' trigger
      window are loaded.
    - A sender that raises produces a failed ``NotificationResult``; the
      remaining payments are still notified.

Audit relevance:
    ``reminders_sent`` carries type, channel list, template and sent_at
    for every delivered or attempted notification.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from rentals_kernel.domain.clock import Clock, SystemClock
from rentals_kernel.domain.payment import SYSTEM_ACTOR_ID, ReminderRecord
from rentals_kernel.logging_config import LogContext, get_logger
from rentals_kernel.services.payment_store import PaymentFilter, PaymentStore

from rentals_engines.reminders import (
    DEFAULT_SCHEDULES,
    DueReminder,
    ReminderSchedule,
    due_reminders,
)

from rentals_batch.domain.types import CommunicationResult, NotificationResult
from rentals_batch.services.processor import DEFAULT_CHUNK_SIZE, BatchProcessor

from rentals_services.collaborators import LoggingNotificationSender, NotificationSender

logger = get_logger("services.communication")


class PaymentCommunicationService:
    """
    Communication pass.

    Contract:
        ``enabled_channels`` of None allows every channel a schedule names.
    Non-goals:
        - Does NOT retry failed deliveries; a failed reminder is recorded
          and the next schedule step notifies again.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        sender: NotificationSender | None = None,
        clock: Clock | None = None,
        schedules: Sequence[ReminderSchedule] = DEFAULT_SCHEDULES,
        enabled_channels: Iterable[str] | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        actor_id: UUID | None = None,
    ):
        self._sender = sender or LoggingNotificationSender()
        self._clock = clock or SystemClock()
        self._schedules = tuple(schedules)
        self._channels = frozenset(enabled_channels) if enabled_channels is not None else None
        self._actor_id = actor_id or SYSTEM_ACTOR_ID
        self._processor = BatchProcessor(session_factory, self._clock, chunk_size)

    def process_automated_notifications(self) -> CommunicationResult:
        """Send every reminder due today."""
        now = self._clock.now()
        today = self._clock.today_utc()
        triggers = [s.trigger_days for s in self._schedules if s.enabled]
        if not triggers:
            return CommunicationResult(processed=0, sent=0, failed=0)

        def select_ids(session: Session) -> list[UUID]:
            return PaymentStore(session).find_ids(PaymentFilter(
                due_on_or_after=today - timedelta(days=max(triggers)),
                due_on_or_before=today - timedelta(days=min(triggers)),
                eligible_only=True,
            ))

        def process_item(session: Session, payment_id: UUID) -> list[DueReminder]:
            store = PaymentStore(session)
            payment = store.get(payment_id)
            due = due_reminders(payment, now, self._schedules, self._channels)
            for reminder in due:
                schedule = reminder.schedule
                store.append_reminder(
                    payment_id,
                    ReminderRecord(
                        reminder_type=schedule.reminder_type,
                        sent_at=now,
                        channel=",".join(reminder.channels),
                        template_id=schedule.template_id,
                    ),
                    actor_id=self._actor_id,
                )
            return due

        # Sent only after the chunk that recorded them has committed.
        run = self._processor.run(select_ids, process_item)
        notifications = tuple(
            self._deliver(reminder)
            for _, due in run.item_results
            for reminder in due
        )
        sent = sum(1 for n in notifications if n.success)
        failed = len(notifications) - sent
        logger.info(
            "communication_pass_completed",
            extra={
                "processed": run.total_items,
                "sent": sent,
                "failed": failed,
                "errors": len(run.errors),
            },
        )
        return CommunicationResult(
            processed=run.total_items,
            sent=sent,
            failed=failed,
            notifications=notifications,
            errors=run.errors,
        )

    def _deliver(self, reminder: DueReminder) -> NotificationResult:
        schedule = reminder.schedule
        with LogContext.bind(payment_id=reminder.payment_id):
            try:
                outcome = self._sender.send(
                    reminder.payment_id, schedule.template_id, reminder.channels,
                )
                success, error = outcome.success, outcome.error
            except Exception as exc:
                logger.warning(
                    "notification_send_failed",
                    extra={
                        "template_id": schedule.template_id,
                        "channels": list(reminder.channels),
                        "error": str(exc),
                    },
                )
                success, error = False, str(exc)
        return NotificationResult(
            payment_id=reminder.payment_id,
            reminder_type=schedule.reminder_type.value,
            template_id=schedule.template_id,
            channels=reminder.channels,
            success=success,
            error=error,
        )
