"""ORM models for the rentals kernel."""

from rentals_kernel.models.payment import (
    PaymentEventModel,
    PaymentHistoryModel,
    PaymentModel,
    PaymentReminderModel,
)


def import_all_models() -> None:
    """Import every ORM module so Base.metadata knows all tables."""
    import rentals_kernel.models.payment  # noqa: F401


__all__ = [
    "PaymentModel",
    "PaymentHistoryModel",
    "PaymentReminderModel",
    "PaymentEventModel",
    "import_all_models",
]
