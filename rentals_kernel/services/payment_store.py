"""
PaymentStore -- persistence boundary for payment rows.

Responsibility:
    Reads payments as frozen ``Payment`` snapshots and performs the one
    permitted write path for status and fee fields: a conditional UPDATE
    that matches both the id and the version the caller read.  Also
    appends history, reminder and audit rows.

Architecture position:
    Kernel > Services -- imperative shell.  Scoped by the SQLAlchemy
    ``Session`` it is constructed with; uses ``session.flush()`` and never
    commits (the caller owns the transaction).

Invariants enforced:
    - ``conditional_update`` increments ``version`` by exactly one, inside
      the same statement that checks it, so two writers holding the same
      version cannot both succeed.
    - With ``refuse_terminal=True`` the terminal-status check is part of
      the same WHERE clause: nothing is written to a terminal row.

Failure modes:
    - PaymentNotFoundError: id does not exist.
    - OptimisticLockError: the row's version no longer matches.
    - TerminalPaymentError: the row is terminal and ``refuse_terminal``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from rentals_kernel.domain.payment import (
    TERMINAL_STATUSES,
    Payment,
    PaymentEvent,
    PaymentHistoryEntry,
    PaymentStatus,
    PaymentType,
    ReminderRecord,
)
from rentals_kernel.exceptions import (
    OptimisticLockError,
    PaymentNotFoundError,
    TerminalPaymentError,
)
from rentals_kernel.logging_config import get_logger
from rentals_kernel.models.payment import (
    PaymentEventModel,
    PaymentHistoryModel,
    PaymentModel,
    PaymentReminderModel,
)

logger = get_logger("services.payment_store")

_TERMINAL_VALUES = tuple(s.value for s in TERMINAL_STATUSES)

# Columns a conditional update may touch.  ``version`` is managed here.
PATCHABLE_FIELDS: frozenset[str] = frozenset({
    "status",
    "amount_paid",
    "late_fee_applied",
    "late_fee_date",
    "paid_date",
    "processor_reference",
    "notes",
    "last_synced_at",
})


@dataclass(frozen=True)
class PaymentFilter:
    """Selection criteria for ``PaymentStore.find``.

    ``eligible_only`` is the nightly-run selection: non-terminal, has a
    due date, not soft-deleted.
    """

    statuses: tuple[PaymentStatus, ...] = ()
    payment_types: tuple[PaymentType, ...] = ()
    payment_ids: tuple[UUID, ...] = ()
    parent_payment_id: UUID | None = None
    due_on_or_before: date | None = None
    due_on_or_after: date | None = None
    eligible_only: bool = False
    include_deleted: bool = False
    limit: int | None = None


@dataclass(frozen=True)
class StatusSummaryRow:
    """Aggregate per status for reporting."""

    status: PaymentStatus
    count: int
    total_amount: Decimal
    total_paid: Decimal
    total_late_fees: Decimal


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class PaymentStore:
    """Session-scoped payment persistence.

    Contract:
        - Reads return ``Payment`` snapshots, never live ORM rows.
        - ``conditional_update`` is the only method that changes an
          existing payment row.
    Non-goals:
        - Does NOT decide whether a transition or fee is allowed; that is
          the engines' and PaymentMutator's job.
        - Does NOT commit.
    """

    def __init__(self, session: Session):
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, payment_id: UUID) -> Payment:
        """Load one payment snapshot.

        Raises:
            PaymentNotFoundError: If payment_id does not exist.
        """
        model = self._session.get(PaymentModel, payment_id, populate_existing=True)
        if model is None:
            raise PaymentNotFoundError(str(payment_id))
        return model.to_dto()

    def find(self, criteria: PaymentFilter | None = None) -> list[Payment]:
        """Return payment snapshots matching ``criteria``, oldest due first."""
        models = self._session.execute(
            self._select(criteria or PaymentFilter())
        ).scalars().all()
        return [m.to_dto() for m in models]

    def find_ids(self, criteria: PaymentFilter | None = None) -> list[UUID]:
        """Same selection as ``find`` but only the ids (batch planning)."""
        stmt = self._select(criteria or PaymentFilter()).with_only_columns(
            PaymentModel.id,
        )
        return list(self._session.execute(stmt).scalars().all())

    def _select(self, criteria: PaymentFilter):
        stmt = select(PaymentModel)
        if criteria.eligible_only:
            stmt = stmt.where(
                PaymentModel.status.not_in(_TERMINAL_VALUES),
                PaymentModel.due_date.is_not(None),
            )
        if not criteria.include_deleted or criteria.eligible_only:
            stmt = stmt.where(PaymentModel.deleted_at.is_(None))
        if criteria.statuses:
            stmt = stmt.where(
                PaymentModel.status.in_([s.value for s in criteria.statuses])
            )
        if criteria.payment_types:
            stmt = stmt.where(
                PaymentModel.payment_type.in_(
                    [t.value for t in criteria.payment_types]
                )
            )
        if criteria.payment_ids:
            stmt = stmt.where(PaymentModel.id.in_(criteria.payment_ids))
        if criteria.parent_payment_id is not None:
            stmt = stmt.where(
                PaymentModel.parent_payment_id == criteria.parent_payment_id
            )
        if criteria.due_on_or_before is not None:
            stmt = stmt.where(PaymentModel.due_date <= criteria.due_on_or_before)
        if criteria.due_on_or_after is not None:
            stmt = stmt.where(PaymentModel.due_date >= criteria.due_on_or_after)
        stmt = stmt.order_by(PaymentModel.due_date, PaymentModel.id)
        if criteria.limit is not None:
            stmt = stmt.limit(criteria.limit)
        return stmt

    def events(self, payment_id: UUID) -> list[PaymentEvent]:
        """Audit entries for a payment, in version order."""
        models = self._session.execute(
            select(PaymentEventModel)
            .where(PaymentEventModel.payment_id == payment_id)
            .order_by(PaymentEventModel.version)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def summarize_by_status(self) -> list[StatusSummaryRow]:
        """Counts and sums per status over non-deleted payments."""
        rows = self._session.execute(
            select(
                PaymentModel.status,
                func.count(PaymentModel.id),
                func.coalesce(func.sum(PaymentModel.amount), 0),
                func.coalesce(func.sum(PaymentModel.amount_paid), 0),
                func.coalesce(func.sum(PaymentModel.late_fee_applied), 0),
            )
            .where(PaymentModel.deleted_at.is_(None))
            .group_by(PaymentModel.status)
            .order_by(PaymentModel.status)
        ).all()
        return [
            StatusSummaryRow(
                status=PaymentStatus(status),
                count=count,
                total_amount=Decimal(str(total)),
                total_paid=Decimal(str(paid)),
                total_late_fees=Decimal(str(fees)),
            )
            for status, count, total, paid, fees in rows
        ]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, payment: Payment, actor_id: UUID) -> Payment:
        """Insert a new payment row (version as given, normally 1)."""
        model = PaymentModel.from_dto(payment, created_by_id=actor_id)
        self._session.add(model)
        self._session.flush()
        logger.debug(
            "payment_created",
            extra={
                "payment_id": str(payment.payment_id),
                "payment_type": payment.payment_type.value,
                "status": payment.status.value,
            },
        )
        return model.to_dto()

    def conditional_update(
        self,
        payment_id: UUID,
        expected_version: int,
        patch: Mapping[str, Any],
        actor_id: UUID,
        refuse_terminal: bool = True,
    ) -> Payment:
        """UPDATE ... WHERE id = :id AND version = :expected.

        Returns the updated snapshot (version ``expected_version + 1``).

        Raises:
            ValueError: If ``patch`` names a non-patchable field.
            PaymentNotFoundError: If payment_id does not exist.
            OptimisticLockError: If the stored version differs.
            TerminalPaymentError: If refuse_terminal and the row is terminal.
        """
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not patchable: {sorted(unknown)}")

        values = {key: _column_value(val) for key, val in patch.items()}
        values["version"] = expected_version + 1
        values["updated_by_id"] = actor_id

        stmt = (
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if refuse_terminal:
            stmt = stmt.where(PaymentModel.status.not_in(_TERMINAL_VALUES))

        result = self._session.execute(stmt)
        if result.rowcount != 1:
            self._raise_for_rejected_update(
                payment_id, expected_version, refuse_terminal,
            )

        self._session.expire_all()
        return self.get(payment_id)

    def _raise_for_rejected_update(
        self,
        payment_id: UUID,
        expected_version: int,
        refuse_terminal: bool,
    ) -> None:
        row = self._session.execute(
            select(PaymentModel.version, PaymentModel.status)
            .where(PaymentModel.id == payment_id)
        ).one_or_none()
        if row is None:
            raise PaymentNotFoundError(str(payment_id))
        version, status = row
        if version != expected_version:
            logger.info(
                "payment_version_conflict",
                extra={
                    "payment_id": str(payment_id),
                    "expected_version": expected_version,
                    "actual_version": version,
                },
            )
            raise OptimisticLockError("Payment", str(payment_id), expected_version)
        if refuse_terminal and status in _TERMINAL_VALUES:
            raise TerminalPaymentError(str(payment_id), status)
        # Version and status both matched yet nothing was updated
        raise OptimisticLockError("Payment", str(payment_id), expected_version)

    def append_history(
        self,
        payment_id: UUID,
        entry: PaymentHistoryEntry,
        actor_id: UUID,
    ) -> None:
        seq = self._next_seq(PaymentHistoryModel, payment_id)
        self._session.add(PaymentHistoryModel(
            payment_id=payment_id,
            seq=seq,
            amount=entry.amount,
            method=entry.method,
            paid_at=entry.paid_at,
            reference=entry.reference,
            created_by_id=actor_id,
        ))
        self._session.flush()
        self._session.expire_all()

    def append_reminder(
        self,
        payment_id: UUID,
        record: ReminderRecord,
        actor_id: UUID,
    ) -> None:
        seq = self._next_seq(PaymentReminderModel, payment_id)
        self._session.add(PaymentReminderModel(
            payment_id=payment_id,
            seq=seq,
            reminder_type=record.reminder_type.value,
            sent_at=record.sent_at,
            channel=record.channel,
            template_id=record.template_id,
            created_by_id=actor_id,
        ))
        self._session.flush()
        self._session.expire_all()

    def append_event(self, event: PaymentEvent) -> None:
        self._session.add(PaymentEventModel(
            payment_id=event.payment_id,
            version=event.version,
            action=event.action,
            from_status=event.from_status.value if event.from_status else None,
            to_status=event.to_status.value if event.to_status else None,
            amount=event.amount,
            detail=event.detail or None,
            recorded_at=event.recorded_at,
            created_by_id=event.actor_id,
        ))
        self._session.flush()

    def _next_seq(
        self,
        model: type[PaymentHistoryModel] | type[PaymentReminderModel],
        payment_id: UUID,
    ) -> int:
        current = self._session.execute(
            select(func.max(model.seq)).where(model.payment_id == payment_id)
        ).scalar()
        return (current or 0) + 1


