"""Kernel services: payment persistence and the version-checked writer."""

from rentals_kernel.services.payment_mutator import (
    FeeMutation,
    PaymentMutator,
    StatusMutation,
)
from rentals_kernel.services.payment_store import (
    PaymentFilter,
    PaymentStore,
    StatusSummaryRow,
)

__all__ = [
    "PaymentStore",
    "PaymentFilter",
    "StatusSummaryRow",
    "PaymentMutator",
    "StatusMutation",
    "FeeMutation",
]
