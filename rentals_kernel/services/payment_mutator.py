"""
PaymentMutator -- the single writer for payment status and fee fields.

Responsibility:
    Turns a computed status change or fee into a version-checked write
    through ``PaymentStore.conditional_update`` and records one audit
    event per accepted mutation.

Architecture position:
    Kernel > Services -- imperative shell.  Engines compute, the mutator
    writes.  Status, late-fee pass, receipt and reversal services all go
    through this class; nothing else writes status or fee columns.

Invariants enforced:
    - Every accepted mutation increments ``version`` by exactly 1 and
      appends exactly one ``PaymentEvent`` carrying the new version.
    - A version mismatch raises ``OptimisticLockError`` (not a generic
      failure) so callers can retry the one payment or skip it.
    - Automated passes (``automated=True``) never write to a terminal
      payment; the check and the write are one statement.

Failure modes:
    - OptimisticLockError, PaymentNotFoundError, TerminalPaymentError
      propagate from the store unchanged.

Audit relevance:
    ``payment_events`` holds from/to status, fee amount and a detail dict
    (rule id, breakdown, reason) for every write this class makes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from rentals_kernel.domain.clock import Clock, SystemClock
from rentals_kernel.domain.payment import (
    SYSTEM_ACTOR_ID,
    Payment,
    PaymentEvent,
    PaymentHistoryEntry,
    PaymentStatus,
)
from rentals_kernel.logging_config import get_logger
from rentals_kernel.services.payment_store import PaymentStore

logger = get_logger("services.payment_mutator")


@dataclass(frozen=True)
class StatusMutation:
    """A status change plus the field patch its side effects produced.

    ``from_status`` is the status the caller read together with the
    expected version; the write itself re-checks only the version.
    """

    from_status: PaymentStatus
    to_status: PaymentStatus
    patch: Mapping[str, Any] = field(default_factory=dict)
    reason: str | None = None
    detail: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FeeMutation:
    """A late fee to record on the origin payment.

    ``total_applied`` is the new value of ``late_fee_applied``;
    ``charged`` is what this pass added on top of the previous value.
    """

    total_applied: Decimal
    charged: Decimal
    rule_id: str
    days_overdue: int
    breakdown: Mapping[str, Any] = field(default_factory=dict)
    notes: str | None = None


class PaymentMutator:
    """Version-checked payment writer.

    Contract:
        ``update_status`` / ``apply_fee`` / ``reset_fee`` /
        ``record_receipt`` each take the version the caller read and
        return the new snapshot.
    Non-goals:
        - Does NOT validate transitions or compute fees.
        - Does NOT commit -- caller controls boundaries.
    """

    def __init__(
        self,
        store: PaymentStore,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or SYSTEM_ACTOR_ID

    @property
    def store(self) -> PaymentStore:
        return self._store

    def update_status(
        self,
        payment_id: UUID,
        expected_version: int,
        mutation: StatusMutation,
        automated: bool = True,
    ) -> Payment:
        """Set a new status (and side-effect fields) if the version matches."""
        now = self._clock.now()
        patch = dict(mutation.patch)
        patch["status"] = mutation.to_status
        patch["last_synced_at"] = now

        updated = self._store.conditional_update(
            payment_id,
            expected_version,
            patch,
            actor_id=self._actor_id,
            refuse_terminal=automated,
        )
        detail = dict(mutation.detail)
        if mutation.reason:
            detail["reason"] = mutation.reason
        self._record(
            updated,
            action="status_changed",
            now=now,
            from_status=mutation.from_status,
            to_status=mutation.to_status,
            amount=None,
            detail=detail,
        )
        logger.info(
            "payment_status_updated",
            extra={
                "payment_id": str(payment_id),
                "from_status": mutation.from_status.value,
                "to_status": mutation.to_status.value,
                "version": updated.version,
            },
        )
        return updated

    def apply_fee(
        self,
        payment_id: UUID,
        expected_version: int,
        fee: FeeMutation,
    ) -> Payment:
        """Record a late fee on the origin payment if the version matches."""
        now = self._clock.now()
        patch: dict[str, Any] = {
            "late_fee_applied": fee.total_applied,
            "late_fee_date": now,
        }
        if fee.notes is not None:
            patch["notes"] = fee.notes

        updated = self._store.conditional_update(
            payment_id,
            expected_version,
            patch,
            actor_id=self._actor_id,
            refuse_terminal=True,
        )
        self._record(
            updated,
            action="late_fee_applied",
            now=now,
            from_status=None,
            to_status=None,
            amount=fee.charged,
            detail={
                "rule_id": fee.rule_id,
                "days_overdue": fee.days_overdue,
                "total_applied": str(fee.total_applied),
                "breakdown": dict(fee.breakdown),
            },
        )
        logger.info(
            "payment_late_fee_recorded",
            extra={
                "payment_id": str(payment_id),
                "rule_id": fee.rule_id,
                "charged": str(fee.charged),
                "total_applied": str(fee.total_applied),
                "version": updated.version,
            },
        )
        return updated

    def reset_fee(
        self,
        payment_id: UUID,
        expected_version: int,
        reason: str,
        previous_fee: Decimal,
        notes: str | None = None,
    ) -> Payment:
        """Clear ``late_fee_applied`` / ``late_fee_date`` (manual reversal).

        Not an automated pass, so terminal payments are not refused: a fee
        on a payment that was since paid can still be reversed.
        """
        now = self._clock.now()
        patch: dict[str, Any] = {
            "late_fee_applied": Decimal("0"),
            "late_fee_date": None,
        }
        if notes is not None:
            patch["notes"] = notes

        updated = self._store.conditional_update(
            payment_id,
            expected_version,
            patch,
            actor_id=self._actor_id,
            refuse_terminal=False,
        )
        self._record(
            updated,
            action="late_fee_reset",
            now=now,
            from_status=None,
            to_status=None,
            amount=previous_fee,
            detail={"reason": reason},
        )
        return updated

    def record_receipt(
        self,
        payment_id: UUID,
        expected_version: int,
        entry: PaymentHistoryEntry,
        amount_paid: Decimal,
        mutation: StatusMutation | None = None,
    ) -> Payment:
        """Record a received amount, and the status change it caused if any.

        One version bump covers the new ``amount_paid``, the optional
        status patch and the appended history entry.
        """
        now = self._clock.now()
        patch: dict[str, Any] = {"amount_paid": amount_paid}
        if mutation is not None:
            patch.update(mutation.patch)
            patch["status"] = mutation.to_status
            patch["last_synced_at"] = now

        updated = self._store.conditional_update(
            payment_id,
            expected_version,
            patch,
            actor_id=self._actor_id,
            refuse_terminal=True,
        )
        self._store.append_history(payment_id, entry, actor_id=self._actor_id)
        self._record(
            updated,
            action="payment_received",
            now=now,
            from_status=mutation.from_status if mutation else None,
            to_status=mutation.to_status if mutation else None,
            amount=entry.amount,
            detail={"method": entry.method, "amount_paid": str(amount_paid)},
        )
        logger.info(
            "payment_receipt_recorded",
            extra={
                "payment_id": str(payment_id),
                "amount": str(entry.amount),
                "amount_paid": str(amount_paid),
                "status": updated.status.value,
                "version": updated.version,
            },
        )
        return self._store.get(payment_id)

    def _record(
        self,
        updated: Payment,
        action: str,
        now: datetime,
        from_status: PaymentStatus | None,
        to_status: PaymentStatus | None,
        amount: Decimal | None,
        detail: dict[str, Any],
    ) -> None:
        self._store.append_event(PaymentEvent(
            payment_id=updated.payment_id,
            version=updated.version,
            action=action,
            recorded_at=now,
            actor_id=self._actor_id,
            from_status=from_status,
            to_status=to_status,
            amount=amount,
            detail=detail,
        ))
