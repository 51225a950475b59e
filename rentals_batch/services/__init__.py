"""Batch services: the chunked processor."""

from rentals_batch.services.processor import DEFAULT_CHUNK_SIZE, BatchProcessor

__all__ = ["BatchProcessor", "DEFAULT_CHUNK_SIZE"]
