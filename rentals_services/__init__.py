"""
rentals_services -- Package init and public API.

Responsibility:
    Stateful services that compose the pure engines (rentals_engines/)
    with database sessions and injected collaborators.  This is the
    layer that holds sessions, reads the clock and calls the notification
    sender and receipt generator.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        rentals_services/ -> rentals_engines/  (allowed)
        rentals_services/ -> rentals_kernel/   (allowed)
        rentals_services/ -> rentals_batch.services / .domain (allowed)
        rentals_engines/  -> rentals_services/ (FORBIDDEN)
        rentals_kernel/   -> rentals_services/ (FORBIDDEN)

Invariants enforced:
    - Every payment write goes through PaymentMutator.
    - Rule tables, thresholds and schedules are passed in at construction
      and never mutated.
"""

from rentals_services.collaborators import (
    ChannelResult,
    LoggingNotificationSender,
    LoggingReceiptGenerator,
    NotificationOutcome,
    NotificationSender,
    ReceiptGenerator,
    ReceiptOutcome,
)
from rentals_services.communication_service import PaymentCommunicationService
from rentals_services.late_fee_service import LateFeeService
from rentals_services.receipt_service import PaymentReceiptService, ReceiptResult
from rentals_services.status_service import PaymentStatusService, StatusStatistics

__all__ = [
    "ChannelResult",
    "LateFeeService",
    "LoggingNotificationSender",
    "LoggingReceiptGenerator",
    "NotificationOutcome",
    "NotificationSender",
    "PaymentCommunicationService",
    "PaymentReceiptService",
    "PaymentStatusService",
    "ReceiptGenerator",
    "ReceiptOutcome",
    "ReceiptResult",
    "StatusStatistics",
]
