"""Batch ORM models."""

from ledger_batch.models.batch import BatchRunModel

__all__ = ["BatchRunModel"]
