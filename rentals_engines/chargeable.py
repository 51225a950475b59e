"""
Chargeable -- the narrow view of a billable item that late fees operate on.

Payments and invoices both accrue late fees under the same rules.  The
fee engine only needs an amount, a due date and the charge types the item
carries, so each entity gets a thin adapter and there is one calculator.

Architecture: rentals_engines.  Pure, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable

from rentals_kernel.domain.payment import ZERO, Payment


@runtime_checkable
class Chargeable(Protocol):
    """Anything a late fee can be computed against."""

    @property
    def reference(self) -> str: ...

    @property
    def base_amount(self) -> Decimal: ...

    @property
    def due_date(self) -> date | None: ...

    @property
    def charge_types(self) -> frozenset[str]: ...


@dataclass(frozen=True)
class PaymentChargeable:
    """Adapter: a ``Payment`` charged on its full amount."""

    payment: Payment

    @property
    def reference(self) -> str:
        return str(self.payment.payment_id)

    @property
    def base_amount(self) -> Decimal:
        return self.payment.amount

    @property
    def due_date(self) -> date | None:
        return self.payment.due_date

    @property
    def charge_types(self) -> frozenset[str]:
        return frozenset({self.payment.payment_type.value})


@dataclass(frozen=True)
class InvoiceView:
    """Fields of an invoice the fee engine reads.

    ``total_amount`` includes any late fee already added to the invoice.
    """

    invoice_id: str
    total_amount: Decimal
    due_date: date | None
    late_fee_amount: Decimal = ZERO
    line_item_types: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class InvoiceChargeable:
    """Adapter: an invoice charged on its total less existing late fees.

    A rule applies when any line item type is in its payment types.
    """

    invoice: InvoiceView

    @property
    def reference(self) -> str:
        return self.invoice.invoice_id

    @property
    def base_amount(self) -> Decimal:
        base = self.invoice.total_amount - self.invoice.late_fee_amount
        return base if base > ZERO else ZERO

    @property
    def due_date(self) -> date | None:
        return self.invoice.due_date

    @property
    def charge_types(self) -> frozenset[str]:
        return self.invoice.line_item_types
