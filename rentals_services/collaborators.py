"""
Collaborator interfaces consumed by the payment passes.

Notification delivery and receipt rendering live outside this system.
The passes only need a success flag per channel and a document
reference, so each collaborator is a narrow Protocol.  The logging
implementations are the defaults when no real transport is wired in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from rentals_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")


@dataclass(frozen=True)
class ChannelResult:
    channel: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class NotificationOutcome:
    """``success`` is True only when every channel succeeded."""

    success: bool
    channel_results: tuple[ChannelResult, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class ReceiptOutcome:
    success: bool
    document_ref: str | None = None
    error: str | None = None


class NotificationSender(Protocol):
    def send(
        self,
        payment_id: str,
        template_id: str,
        channels: Sequence[str],
    ) -> NotificationOutcome: ...


class ReceiptGenerator(Protocol):
    def generate(self, payment_id: str) -> ReceiptOutcome: ...


class LoggingNotificationSender:
    """Records each notification as a log line and reports success."""

    def send(
        self,
        payment_id: str,
        template_id: str,
        channels: Sequence[str],
    ) -> NotificationOutcome:
        logger.info(
            "notification_dispatched",
            extra={
                "payment_id": payment_id,
                "template_id": template_id,
                "channels": list(channels),
            },
        )
        return NotificationOutcome(
            success=True,
            channel_results=tuple(ChannelResult(c, True) for c in channels),
        )


class LoggingReceiptGenerator:
    """Records the receipt request and returns a deterministic reference."""

    def generate(self, payment_id: str) -> ReceiptOutcome:
        logger.info("receipt_requested", extra={"payment_id": payment_id})
        return ReceiptOutcome(success=True, document_ref=f"receipt-{payment_id}")
