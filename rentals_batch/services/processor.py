"""
BatchProcessor -- chunked unit-of-work runner with SAVEPOINT-per-item isolation.

Contract:
    ``run(select_ids, process_item)`` selects the ids to work on, splits
    them into chunks of ``chunk_size``, and processes each chunk in its own
    session and transaction.  Every item runs inside a SAVEPOINT.

Architecture: rentals_batch/services.  Imports from rentals_batch.domain and
    rentals_kernel only, so rentals_services can drive its passes through it.

Invariants enforced:
    - One failing item never aborts its chunk or the run: the SAVEPOINT
      is rolled back and the exception becomes an ``ItemError``.
    - A chunk commits or rolls back as a unit.  A failed commit turns the
      chunk's items into errors; earlier chunks stay committed.
    - ``dry_run=True`` rolls back every chunk, so nothing persists.
    - All timestamps that reach the database come from the injected Clock.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from rentals_kernel.db.engine import session_scope
from rentals_kernel.domain.clock import Clock, SystemClock
from rentals_kernel.logging_config import LogContext, get_logger

from rentals_batch.domain.types import BatchRunResult, ItemError

logger = get_logger("batch.processor")

DEFAULT_CHUNK_SIZE = 50

SelectIds = Callable[[Session], Sequence[UUID]]
ProcessItem = Callable[[Session, UUID], Any]


def error_code_for(exc: BaseException) -> str:
    return getattr(exc, "code", None) or "UNHANDLED_EXCEPTION"


class BatchProcessor:
    """Chunked batch runner.

    Contract:
        ``process_item`` receives the chunk's session and one id; whatever it
        returns is collected in ``BatchRunResult.item_results``.
    Non-goals:
        - Does NOT retry failed items.  An OptimisticLockError is reported
          and the payment is picked up again by the next run.
        - Does NOT process items in parallel; chunks run sequentially.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._chunk_size = chunk_size

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    def run(
        self,
        select_ids: SelectIds,
        process_item: ProcessItem,
        dry_run: bool = False,
    ) -> BatchRunResult:
        start_time = time.monotonic()

        with session_scope(self._session_factory) as session:
            ids = list(select_ids(session))

        results: list[tuple[UUID, Any]] = []
        errors: list[ItemError] = []
        chunks_committed = 0
        chunks_failed = 0

        for chunk_index, offset in enumerate(range(0, len(ids), self._chunk_size)):
            chunk = ids[offset:offset + self._chunk_size]
            chunk_results, chunk_errors, committed = self._run_chunk(
                chunk_index, chunk, process_item, dry_run,
            )
            errors.extend(chunk_errors)
            if committed:
                chunks_committed += 1
                results.extend(chunk_results)
            else:
                chunks_failed += 1

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "batch_run_completed",
            extra={
                "total_items": len(ids),
                "succeeded": len(results),
                "failed": len(errors),
                "chunks_committed": chunks_committed,
                "chunks_failed": chunks_failed,
                "dry_run": dry_run,
                "duration_ms": duration_ms,
            },
        )
        return BatchRunResult(
            total_items=len(ids),
            succeeded=len(results),
            failed=len(errors),
            chunks_committed=chunks_committed,
            chunks_failed=chunks_failed,
            item_results=tuple(results),
            errors=tuple(errors),
            duration_ms=duration_ms,
        )

    def _run_chunk(
        self,
        chunk_index: int,
        chunk: list[UUID],
        process_item: ProcessItem,
        dry_run: bool,
    ) -> tuple[list[tuple[UUID, Any]], list[ItemError], bool]:
        results: list[tuple[UUID, Any]] = []
        errors: list[ItemError] = []

        session = self._session_factory()
        try:
            for payment_id in chunk:
                with LogContext.bind(payment_id=str(payment_id)):
                    savepoint = session.begin_nested()
                    try:
                        value = process_item(session, payment_id)
                        savepoint.commit()
                        results.append((payment_id, value))
                    except Exception as exc:
                        savepoint.rollback()
                        errors.append(ItemError(
                            payment_id=str(payment_id),
                            error_code=error_code_for(exc),
                            message=str(exc),
                        ))
                        logger.warning(
                            "batch_item_failed",
                            extra={
                                "error_code": error_code_for(exc),
                                "error": str(exc),
                            },
                        )

            if dry_run:
                session.rollback()
            else:
                session.commit()
        except Exception as exc:
            session.rollback()
            logger.error(
                "batch_chunk_failed",
                extra={
                    "chunk_index": chunk_index,
                    "chunk_size": len(chunk),
                    "error": str(exc),
                },
                exc_info=True,
            )
            errors.extend(
                ItemError(
                    payment_id=str(payment_id),
                    error_code="CHUNK_COMMIT_FAILED",
                    message=str(exc),
                )
                for payment_id, _ in results
            )
            return [], errors, False
        finally:
            session.close()

        logger.info(
            "batch_chunk_committed" if not dry_run else "batch_chunk_rolled_back",
            extra={
                "chunk_index": chunk_index,
                "chunk_size": len(chunk),
                "succeeded": len(results),
                "failed": len(errors),
            },
        )
        return results, errors, True
