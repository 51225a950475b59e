"""
Typed exception hierarchy for the rentals kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The nightly run has to tell apart an error that should stop everything
(a malformed fee rule) from one that only affects a single payment
(a concurrent writer won the race). Parsing message strings for that is
fragile, so every error here:
  1. Has its own class (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, log-safe)
  3. Stores structured DATA as attributes (not just a message string)

Example:
    try:
        mutator.update_status(payment_id, expected_version, mutation)
    except OptimisticLockError as e:
        result.add_error(e.entity_id, e.code, str(e))   # per-item, keep going

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RentalsError (base)
    |
    +-- ValidationError                 never retried, surfaced to caller
    |   +-- InvalidTransitionError
    |   +-- UnknownRuleError
    |   +-- MalformedRuleError
    |   +-- StatusDerivationError
    |   +-- ConfigurationError
    |
    +-- ConcurrencyError                caller may retry the one payment
    |   +-- OptimisticLockError
    |
    +-- NotFoundError                   per-item error
    |   +-- PaymentNotFoundError
    |
    +-- PaymentStateError
    |   +-- TerminalPaymentError
    |   +-- NoLateFeeToReverseError
    |
    +-- CollaboratorError               logged, never rolls back a mutation
    |   +-- NotificationDeliveryError
    |   +-- ReceiptGenerationError
    |
    +-- StageFailedError                recorded by the daily orchestrator

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-------------------------------------
Validation    | INVALID_TRANSITION          | No transition rule allows from -> to
              | UNKNOWN_RULE                | Rule id not present in the rule set
              | MALFORMED_RULE              | Rule definition is inconsistent
              | STATUS_DERIVATION_FAILED    | Thresholds left a date uncovered
              | CONFIGURATION_ERROR         | Config file content is invalid
--------------|-----------------------------|-------------------------------------
Concurrency   | OPTIMISTIC_LOCK_CONFLICT    | Version changed since the read
--------------|-----------------------------|-------------------------------------
Not found     | PAYMENT_NOT_FOUND           | Payment id does not exist
--------------|-----------------------------|-------------------------------------
State         | TERMINAL_PAYMENT            | Automated pass touched a terminal row
              | NO_LATE_FEE_TO_REVERSE      | Reversal requested, no fee recorded
--------------|-----------------------------|-------------------------------------
Collaborator  | NOTIFICATION_DELIVERY_FAILED| Sender reported failure
              | RECEIPT_GENERATION_FAILED   | Receipt generator reported failure
--------------|-----------------------------|-------------------------------------
Stage         | STAGE_FAILED                | A whole daily pass threw

===============================================================================
"""

from __future__ import annotations


class RentalsError(Exception):
    """
    Base exception for all rentals kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "RENTALS_ERROR"


# Validation


class ValidationError(RentalsError):
    """Base exception for invalid requests and definitions."""

    code: str = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    """No transition rule permits the requested status change."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, payment_id: str, from_status: str, to_status: str):
        self.payment_id = payment_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for payment {payment_id}: "
            f"{from_status} -> {to_status}"
        )


class UnknownRuleError(ValidationError):
    """A late-fee rule id was referenced that is not in the rule set."""

    code: str = "UNKNOWN_RULE"

    def __init__(self, rule_id: str, known_rule_ids: list[str] | None = None):
        self.rule_id = rule_id
        self.known_rule_ids = known_rule_ids or []
        super().__init__(f"Unknown late fee rule: {rule_id}")


class MalformedRuleError(ValidationError):
    """A late-fee rule definition is internally inconsistent."""

    code: str = "MALFORMED_RULE"

    def __init__(self, rule_id: str, reason: str):
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Malformed late fee rule {rule_id}: {reason}")


class StatusDerivationError(ValidationError):
    """Status thresholds left a (due date, now) pair without a status."""

    code: str = "STATUS_DERIVATION_FAILED"

    def __init__(self, days_until_due: int, days_overdue: int):
        self.days_until_due = days_until_due
        self.days_overdue = days_overdue
        super().__init__(
            "No status matched: "
            f"days_until_due={days_until_due}, days_overdue={days_overdue}"
        )


class ConfigurationError(ValidationError):
    """Configuration content could not be parsed into a valid config."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")


# Concurrency


class ConcurrencyError(RentalsError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id} "
            f"(expected version {expected_version}): "
            "entity was modified by another transaction"
        )


# Not found


class NotFoundError(RentalsError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class PaymentNotFoundError(NotFoundError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


# Payment state


class PaymentStateError(RentalsError):
    """Base exception for operations not allowed in the payment's state."""

    code: str = "PAYMENT_STATE_ERROR"


class TerminalPaymentError(PaymentStateError):
    """Automated pass attempted to mutate a payment in a terminal status."""

    code: str = "TERMINAL_PAYMENT"

    def __init__(self, payment_id: str, status: str):
        self.payment_id = payment_id
        self.status = status
        super().__init__(
            f"Payment {payment_id} is in terminal status {status}"
        )


class NoLateFeeToReverseError(PaymentStateError):
    """Reversal requested for a payment that carries no late fee."""

    code: str = "NO_LATE_FEE_TO_REVERSE"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"No late fee applied to payment {payment_id}")


# Collaborators


class CollaboratorError(RentalsError):
    """Base exception for failures reported by external collaborators."""

    code: str = "COLLABORATOR_ERROR"


class NotificationDeliveryError(CollaboratorError):
    """Notification sender reported a failed delivery."""

    code: str = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(self, payment_id: str, template_id: str, reason: str):
        self.payment_id = payment_id
        self.template_id = template_id
        self.reason = reason
        super().__init__(
            f"Notification {template_id} for payment {payment_id} failed: {reason}"
        )


class ReceiptGenerationError(CollaboratorError):
    """Receipt generator reported a failure."""

    code: str = "RECEIPT_GENERATION_FAILED"

    def __init__(self, payment_id: str, reason: str):
        self.payment_id = payment_id
        self.reason = reason
        super().__init__(f"Receipt for payment {payment_id} failed: {reason}")


# Orchestration


class StageFailedError(RentalsError):
    """An entire daily processing pass failed unexpectedly."""

    code: str = "STAGE_FAILED"

    def __init__(self, stage: str, reason: str):
        self.stage = stage
        self.reason = reason
        super().__init__(f"Stage {stage} failed: {reason}")
