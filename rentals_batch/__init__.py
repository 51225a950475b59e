"""
rentals_batch -- Nightly batch processing for the payment lifecycle.

Provides the chunked ``BatchProcessor`` (one transaction per chunk,
SAVEPOINT per item), the run result types, and the ``DailyOrchestrator``
that runs the status, late-fee and communication passes once per day.

Architecture:
    ``rentals_batch.domain`` and ``rentals_batch.services`` depend only on
    ``rentals_kernel``; the passes in ``rentals_services`` run through
    them.  ``rentals_batch.orchestrator`` sits on top of rentals_services
    and is imported explicitly, never from this package root.

Invariants:
    - Per-item isolation: one bad payment never aborts a chunk or a run.
    - Chunk atomicity: a chunk commits or rolls back as a unit.
    - Clock injection: no wall-clock reads outside SystemClock.
    - ``run_daily_processing`` always returns a result; stage failures
      are reported in ``critical_errors``.
"""
