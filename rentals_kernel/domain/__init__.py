"""
rentals_kernel.domain -- Pure types and value objects.

ZERO I/O.  All types are frozen dataclasses or str-Enums.
"""

from rentals_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from rentals_kernel.domain.payment import (
    OVERDUE_STATUSES,
    SYSTEM_ACTOR_ID,
    TERMINAL_STATUSES,
    TIME_DERIVED_STATUSES,
    EmbeddedFeeType,
    LateFeeConfig,
    Payment,
    PaymentEvent,
    PaymentHistoryEntry,
    PaymentStatus,
    PaymentType,
    ReminderRecord,
    ReminderType,
    round_money,
)
