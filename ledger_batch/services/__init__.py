"""Batch services: executor and clearing file generation."""

from ledger_batch.services.clearing import (
    ClearingFileGenerator,
    ClearingFileSink,
    ClearingRecord,
    DirectoryClearingSink,
    InMemoryClearingSink,
    RecordKind,
)
from ledger_batch.services.executor import BatchExecutor

__all__ = [
    "BatchExecutor",
    "ClearingFileGenerator",
    "ClearingFileSink",
    "ClearingRecord",
    "DirectoryClearingSink",
    "InMemoryClearingSink",
    "RecordKind",
]
