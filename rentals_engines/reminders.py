"""
Reminder schedule evaluation.

Decides which reminders are due for a payment today: a schedule fires on
the day whose signed offset from the due date equals its trigger
(-7 = a week before, +15 = two weeks late), unless a reminder of the same
type already went out on that UTC calendar day.

Pure, zero I/O.  Sending and recording are the communication service's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Sequence

from rentals_kernel.domain.payment import Payment, ReminderType
from rentals_engines.status import utc_date


@dataclass(frozen=True)
class ReminderSchedule:
    """One reminder rule; ``trigger_days`` is negative before the due date."""

    reminder_type: ReminderType
    trigger_days: int
    channels: tuple[str, ...]
    template_id: str
    enabled: bool = True
    priority: str = "medium"


@dataclass(frozen=True)
class DueReminder:
    """A schedule that should fire now, on the channels left enabled."""

    payment_id: str
    schedule: ReminderSchedule
    channels: tuple[str, ...]


DEFAULT_SCHEDULES: tuple[ReminderSchedule, ...] = (
    ReminderSchedule(ReminderType.REMINDER, -7, ("email",), "payment_reminder_7_days", priority="low"),
    ReminderSchedule(ReminderType.REMINDER, -3, ("email",), "payment_reminder_3_days"),
    ReminderSchedule(ReminderType.REMINDER, -1, ("email", "sms"), "payment_reminder_1_day", priority="high"),
    ReminderSchedule(ReminderType.REMINDER, 0, ("email", "sms"), "payment_due_today", priority="high"),
    ReminderSchedule(ReminderType.OVERDUE, 1, ("email", "sms"), "payment_overdue_1_day", priority="high"),
    ReminderSchedule(ReminderType.OVERDUE, 5, ("email", "sms"), "payment_overdue_5_days", priority="high"),
    ReminderSchedule(ReminderType.FINAL_NOTICE, 15, ("email", "sms"), "payment_final_notice", priority="high"),
)


def days_from_due(due_date: date, now: date | datetime) -> int:
    """Signed UTC calendar days from ``due_date`` to ``now``."""
    return (utc_date(now) - due_date).days


def already_sent_on(payment: Payment, reminder_type: ReminderType, day: date) -> bool:
    return any(
        record.reminder_type == reminder_type and utc_date(record.sent_at) == day
        for record in payment.reminders_sent
    )


def due_reminders(
    payment: Payment,
    now: date | datetime,
    schedules: Sequence[ReminderSchedule] = DEFAULT_SCHEDULES,
    enabled_channels: Iterable[str] | None = None,
) -> list[DueReminder]:
    """Reminders to send for ``payment`` now.

    ``enabled_channels`` of None means every channel is allowed.  A
    schedule whose channels are all disabled is dropped.
    """
    if payment.due_date is None or payment.is_terminal:
        return []
    allowed = frozenset(enabled_channels) if enabled_channels is not None else None
    today = utc_date(now)
    offset = days_from_due(payment.due_date, today)

    due: list[DueReminder] = []
    for schedule in schedules:
        if not schedule.enabled or schedule.trigger_days != offset:
            continue
        if already_sent_on(payment, schedule.reminder_type, today):
            continue
        channels = tuple(
            c for c in schedule.channels if allowed is None or c in allowed
        )
        if not channels:
            continue
        due.append(DueReminder(
            payment_id=str(payment.payment_id),
            schedule=schedule,
            channels=channels,
        ))
    return due
