"""
ORM models for payment persistence.

Contract:
    PaymentModel is the one shared mutable row.  PaymentHistoryModel,
    PaymentReminderModel and PaymentEventModel are append-only children.
    ``PaymentModel.to_dto()`` / ``from_dto()`` convert to and from the
    frozen ``Payment`` snapshot.

Architecture: rentals_kernel/models. Imports from rentals_kernel.db.base
    and rentals_kernel.domain only.

Invariants enforced:
    - ``version`` starts at 1 and is only changed by
      ``PaymentStore.conditional_update`` (``WHERE version = expected``).
    - Rows are never physically deleted; ``deleted_at`` marks soft deletes.
    - ``parent_payment_id`` links a late-fee child to the payment it
      penalizes, so reversal finds the child without parsing notes.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentals_kernel.db.base import TrackedBase, UUIDString
from rentals_kernel.domain.payment import (
    LateFeeConfig,
    Payment,
    PaymentEvent,
    PaymentHistoryEntry,
    PaymentStatus,
    PaymentType,
    ReminderRecord,
    ReminderType,
)


class PaymentModel(TrackedBase):
    """Persistent payment record."""

    __tablename__ = "payments"

    __table_args__ = (
        Index("ix_payments_status", "status"),
        Index("ix_payments_due_date", "due_date"),
        Index("ix_payments_parent_payment_id", "parent_payment_id"),
    )

    tenant_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    property_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lease_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    payment_type: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    late_fee_applied: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0"),
    )
    late_fee_date: Mapped[datetime | None] = mapped_column(nullable=True)
    late_fee_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    paid_date: Mapped[datetime | None] = mapped_column(nullable=True)
    processor_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    parent_payment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=True,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)

    history: Mapped[list["PaymentHistoryModel"]] = relationship(
        "PaymentHistoryModel",
        back_populates="payment",
        order_by="PaymentHistoryModel.seq",
    )
    reminders: Mapped[list["PaymentReminderModel"]] = relationship(
        "PaymentReminderModel",
        back_populates="payment",
        order_by="PaymentReminderModel.seq",
    )

    def to_dto(self) -> Payment:
        return Payment(
            payment_id=self.id,
            payment_type=PaymentType(self.payment_type),
            amount=self.amount,
            amount_paid=self.amount_paid,
            due_date=self.due_date,
            status=PaymentStatus(self.status),
            version=self.version,
            tenant_id=self.tenant_id,
            property_id=self.property_id,
            lease_id=self.lease_id,
            late_fee_applied=self.late_fee_applied,
            late_fee_date=self.late_fee_date,
            late_fee_config=(
                LateFeeConfig.from_dict(self.late_fee_config)
                if self.late_fee_config else None
            ),
            paid_date=self.paid_date,
            processor_reference=self.processor_reference,
            parent_payment_id=self.parent_payment_id,
            description=self.description,
            notes=self.notes,
            deleted_at=self.deleted_at,
            last_synced_at=self.last_synced_at,
            payment_history=tuple(h.to_dto() for h in self.history),
            reminders_sent=tuple(r.to_dto() for r in self.reminders),
        )

    @classmethod
    def from_dto(cls, dto: Payment, created_by_id: UUID) -> PaymentModel:
        return cls(
            id=dto.payment_id,
            tenant_id=dto.tenant_id,
            property_id=dto.property_id,
            lease_id=dto.lease_id,
            payment_type=dto.payment_type.value,
            amount=dto.amount,
            amount_paid=dto.amount_paid,
            due_date=dto.due_date,
            status=dto.status.value,
            version=dto.version,
            late_fee_applied=dto.late_fee_applied,
            late_fee_date=dto.late_fee_date,
            late_fee_config=(
                dto.late_fee_config.to_dict() if dto.late_fee_config else None
            ),
            paid_date=dto.paid_date,
            processor_reference=dto.processor_reference,
            parent_payment_id=dto.parent_payment_id,
            description=dto.description,
            notes=dto.notes,
            deleted_at=dto.deleted_at,
            last_synced_at=dto.last_synced_at,
            created_by_id=created_by_id,
            updated_by_id=None,
        )


class PaymentHistoryModel(TrackedBase):
    """One received amount (append-only)."""

    __tablename__ = "payment_history"

    __table_args__ = (
        Index("ix_payment_history_payment_id", "payment_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    payment: Mapped[PaymentModel] = relationship(
        "PaymentModel", back_populates="history",
    )

    def to_dto(self) -> PaymentHistoryEntry:
        return PaymentHistoryEntry(
            amount=self.amount,
            method=self.method,
            paid_at=self.paid_at,
            reference=self.reference,
        )


class PaymentReminderModel(TrackedBase):
    """One notification sent for a payment (append-only)."""

    __tablename__ = "payment_reminders"

    __table_args__ = (
        Index("ix_payment_reminders_payment_id", "payment_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    reminder_type: Mapped[str] = mapped_column(String(50), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(nullable=False)
    channel: Mapped[str] = mapped_column(String(100), nullable=False)
    template_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    payment: Mapped[PaymentModel] = relationship(
        "PaymentModel", back_populates="reminders",
    )

    def to_dto(self) -> ReminderRecord:
        return ReminderRecord(
            reminder_type=ReminderType(self.reminder_type),
            sent_at=self.sent_at,
            channel=self.channel,
            template_id=self.template_id,
        )


class PaymentEventModel(TrackedBase):
    """Audit entry: one row per accepted payment mutation.

    ``version`` is the payment version the mutation produced, so the
    events of a payment form a gap-free 2..N sequence.
    """

    __tablename__ = "payment_events"

    __table_args__ = (
        Index("ix_payment_events_payment_id", "payment_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    detail: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> PaymentEvent:
        return PaymentEvent(
            payment_id=self.payment_id,
            version=self.version,
            action=self.action,
            recorded_at=self.recorded_at,
            actor_id=self.created_by_id,
            from_status=PaymentStatus(self.from_status) if self.from_status else None,
            to_status=PaymentStatus(self.to_status) if self.to_status else None,
            amount=self.amount,
            detail=self.detail or {},
        )
