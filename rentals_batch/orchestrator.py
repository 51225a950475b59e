"""
DailyOrchestrator -- the nightly run over all open payments.

Contract:
    ``run_daily_processing()`` runs the status pass, the late-fee pass and
    the communication pass in that order, then logs a summary, and returns
    a ``DailyProcessingResult``.  It never raises.

Architecture: rentals_batch (top-level).  Sits above rentals_services and
    is the one place the three passes are composed.  ``from_config`` wires
    them from a ``RentalsConfig``.

Invariants enforced:
    - Stage isolation: a pass that throws is recorded as a ``StageError``
      and the next pass still runs.
    - Ordering: late fees see the statuses the status pass just wrote;
      reminders see the fees.
    - ``overall_success`` is True iff no stage failed as a whole.  Item
      errors inside a stage do not affect it.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from rentals_config.bridges import (
    build_late_fee_rules,
    build_reminder_schedules,
    build_thresholds,
    enabled_channels,
)
from rentals_config.schema import RentalsConfig
from rentals_kernel.domain.clock import Clock, SystemClock
from rentals_kernel.exceptions import StageFailedError
from rentals_kernel.logging_config import LogContext, get_logger

from rentals_batch.domain.types import DailyProcessingResult, StageError
from rentals_batch.services.processor import error_code_for

from rentals_services.collaborators import NotificationSender
from rentals_services.communication_service import PaymentCommunicationService
from rentals_services.late_fee_service import LateFeeService
from rentals_services.status_service import PaymentStatusService

logger = get_logger("batch.orchestrator")

T = TypeVar("T")

STAGE_STATUS = "status_update"
STAGE_LATE_FEES = "late_fees"
STAGE_COMMUNICATION = "communication"
STAGE_SUMMARY = "summary"


class DailyOrchestrator:
    """Composes the three nightly passes.

    Non-goals:
        - Does NOT schedule itself; a cron entry or job runner calls
          ``run_daily_processing`` once per day.
        - Does NOT retry a failed stage within the same run.
    """

    def __init__(
        self,
        status_service: PaymentStatusService,
        late_fee_service: LateFeeService,
        communication_service: PaymentCommunicationService,
        clock: Clock | None = None,
    ) -> None:
        self._status = status_service
        self._late_fees = late_fee_service
        self._communication = communication_service
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        session_factory: sessionmaker[Session],
        config: RentalsConfig,
        clock: Clock | None = None,
        sender: NotificationSender | None = None,
        actor_id: UUID | None = None,
    ) -> DailyOrchestrator:
        """Create a fully wired orchestrator from a loaded configuration.

        Raises:
            ConfigurationError, MalformedRuleError: If the configuration
                cannot be turned into engine inputs.
        """
        effective_clock = clock or SystemClock()
        chunk_size = config.batch.chunk_size
        return cls(
            status_service=PaymentStatusService(
                session_factory,
                clock=effective_clock,
                thresholds=build_thresholds(config),
                chunk_size=chunk_size,
                actor_id=actor_id,
            ),
            late_fee_service=LateFeeService(
                session_factory,
                rules=build_late_fee_rules(config),
                clock=effective_clock,
                chunk_size=chunk_size,
                actor_id=actor_id,
            ),
            communication_service=PaymentCommunicationService(
                session_factory,
                sender=sender,
                clock=effective_clock,
                schedules=build_reminder_schedules(config),
                enabled_channels=enabled_channels(config),
                chunk_size=chunk_size,
                actor_id=actor_id,
            ),
            clock=effective_clock,
        )

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run_daily_processing(self) -> DailyProcessingResult:
        run_id = str(uuid4())
        started_at = self._clock.now()
        start_time = time.monotonic()
        critical: list[StageError] = []

        with LogContext.bind(run_id=run_id):
            logger.info("daily_run_started", extra={"started_at": started_at})

            status_update = self._run_stage(
                STAGE_STATUS, self._status.process_automated_transitions, critical,
            )
            late_fees = self._run_stage(
                STAGE_LATE_FEES, self._late_fees.process_late_fees, critical,
            )
            communication = self._run_stage(
                STAGE_COMMUNICATION,
                self._communication.process_automated_notifications,
                critical,
            )

            result = DailyProcessingResult(
                run_id=run_id,
                started_at=started_at,
                completed_at=self._clock.now(),
                duration_ms=int((time.monotonic() - start_time) * 1000),
                status_update=status_update,
                late_fees=late_fees,
                communication=communication,
                critical_errors=tuple(critical),
            )
            self._run_stage(STAGE_SUMMARY, lambda: self._log_summary(result), critical)
            if len(critical) != len(result.critical_errors):
                result = DailyProcessingResult(
                    run_id=result.run_id,
                    started_at=result.started_at,
                    completed_at=result.completed_at,
                    duration_ms=result.duration_ms,
                    status_update=status_update,
                    late_fees=late_fees,
                    communication=communication,
                    critical_errors=tuple(critical),
                )
        return result

    def _run_stage(
        self,
        stage: str,
        action: Callable[[], T],
        critical: list[StageError],
    ) -> T | None:
        with LogContext.bind(stage=stage):
            try:
                return action()
            except Exception as exc:
                failure = StageFailedError(stage, str(exc))
                critical.append(StageError(
                    stage=stage,
                    error_code=error_code_for(exc),
                    message=str(failure),
                ))
                logger.error(
                    "daily_stage_failed",
                    extra={"error_code": error_code_for(exc), "error": str(exc)},
                    exc_info=True,
                )
                return None

    def _log_summary(self, result: DailyProcessingResult) -> None:
        extra: dict = {
            "duration_ms": result.duration_ms,
            "overall_success": result.overall_success,
            "critical_errors": len(result.critical_errors),
            "item_errors": result.item_error_count,
        }
        if result.status_update is not None:
            extra["status_processed"] = result.status_update.processed
            extra["status_changed"] = result.status_update.changed
        if result.late_fees is not None:
            extra["fees_applied"] = result.late_fees.fees_applied
            extra["total_fees"] = result.late_fees.total_fees
        if result.communication is not None:
            extra["notifications_sent"] = result.communication.sent
            extra["notifications_failed"] = result.communication.failed
        logger.info("daily_run_completed", extra=extra)
