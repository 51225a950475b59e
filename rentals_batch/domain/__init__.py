"""
rentals_batch.domain -- Pure result types for the nightly run.

ZERO I/O.  All types are frozen dataclasses.
"""

from rentals_batch.domain.types import (
    BatchRunResult,
    CommunicationResult,
    DailyProcessingResult,
    ItemError,
    LateFeeApplication,
    NotificationResult,
    ProcessingResult,
    ReversalResult,
    StageError,
    StatusChange,
    StatusUpdateResult,
)

__all__ = [
    "BatchRunResult",
    "CommunicationResult",
    "DailyProcessingResult",
    "ItemError",
    "LateFeeApplication",
    "NotificationResult",
    "ProcessingResult",
    "ReversalResult",
    "StageError",
    "StatusChange",
    "StatusUpdateResult",
]
