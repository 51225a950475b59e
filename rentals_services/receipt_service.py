"""
PaymentReceiptService -- records money received against a payment.

A receipt appends a history entry, raises ``amount_paid`` and moves the
payment to PARTIAL or PAID through the transition table, all in one
versioned write.  Once the transaction has committed and the payment is
PAID, the receipt generator is called; its failures are logged and never
undo the recorded payment.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from rentals_kernel.db.engine import session_scope
from rentals_kernel.domain.clock import Clock, SystemClock
from rentals_kernel.domain.payment import (
    SYSTEM_ACTOR_ID,
    ZERO,
    Payment,
    PaymentHistoryEntry,
    PaymentStatus,
    round_money,
)
from rentals_kernel.exceptions import ReceiptGenerationError
from rentals_kernel.logging_config import get_logger
from rentals_kernel.services.payment_mutator import PaymentMutator, StatusMutation
from rentals_kernel.services.payment_store import PaymentStore

from rentals_engines.transitions import (
    DEFAULT_TRANSITION_TABLE,
    TransitionContext,
    TransitionTable,
)

from rentals_services.collaborators import (
    LoggingReceiptGenerator,
    ReceiptGenerator,
    ReceiptOutcome,
)

logger = get_logger("services.receipt")


@dataclass(frozen=True)
class ReceiptResult:
    payment: Payment
    amount_received: Decimal
    status_changed: bool
    receipt: ReceiptOutcome | None = None


class PaymentReceiptService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        generator: ReceiptGenerator | None = None,
        clock: Clock | None = None,
        transition_table: TransitionTable = DEFAULT_TRANSITION_TABLE,
        actor_id: UUID | None = None,
    ):
        self._session_factory = session_factory
        self._generator = generator or LoggingReceiptGenerator()
        self._clock = clock or SystemClock()
        self._table = transition_table
        self._actor_id = actor_id or SYSTEM_ACTOR_ID

    def record_payment(
        self,
        payment_id: UUID,
        amount: Decimal,
        method: str,
        reference: str | None = None,
    ) -> ReceiptResult:
        """Record ``amount`` received by ``method``.

        Raises:
            ValueError: If amount is not positive.
            PaymentNotFoundError, TerminalPaymentError, OptimisticLockError,
            InvalidTransitionError.
        """
        amount = round_money(Decimal(amount))
        if amount <= ZERO:
            raise ValueError(f"Receipt amount must be positive, got {amount}")

        now = self._clock.now()
        with session_scope(self._session_factory) as session:
            store = PaymentStore(session)
            payment = store.get(payment_id)
            received = replace(payment, amount_paid=payment.amount_paid + amount)
            target = (
                PaymentStatus.PAID
                if received.amount_paid >= received.amount
                else PaymentStatus.PARTIAL
            )
            outcome = self._table.apply_transition(
                received, target, TransitionContext(now=now),
            )
            mutation = None
            if outcome.changed:
                mutation = StatusMutation(
                    from_status=outcome.from_status,
                    to_status=outcome.to_status,
                    patch=outcome.patch,
                    reason=f"payment_received:{method}",
                    detail={"rule": outcome.rule_name},
                )
            updated = PaymentMutator(store, self._clock, self._actor_id).record_receipt(
                payment_id,
                payment.version,
                PaymentHistoryEntry(
                    amount=amount, method=method, paid_at=now, reference=reference,
                ),
                amount_paid=received.amount_paid,
                mutation=mutation,
            )

        receipt = None
        if updated.status == PaymentStatus.PAID:
            receipt = self._generate_receipt(str(payment_id))
        return ReceiptResult(
            payment=updated,
            amount_received=amount,
            status_changed=outcome.changed,
            receipt=receipt,
        )

    def _generate_receipt(self, payment_id: str) -> ReceiptOutcome:
        try:
            outcome = self._generator.generate(payment_id)
            if not outcome.success:
                raise ReceiptGenerationError(payment_id, outcome.error or "unknown")
        except Exception as exc:
            logger.warning(
                "receipt_generation_failed",
                extra={"payment_id": payment_id, "error": str(exc)},
            )
            return ReceiptOutcome(success=False, error=str(exc))
        logger.info(
            "receipt_generated",
            extra={"payment_id": payment_id, "document_ref": outcome.document_ref},
        )
        return outcome
