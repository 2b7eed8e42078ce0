"""
ledger_batch -- daily posting batch for the card ledger.

Chunked, resumable posting runs over a positional input source, with the
run state persisted alongside every committed chunk and a clearing extract
written when a run finishes.
"""

from ledger_batch.domain.types import BatchRunState, BatchRunStatus
from ledger_batch.orchestrator import BatchOrchestrator, DailyPostingResult
from ledger_batch.services.executor import BatchExecutor
from ledger_batch.sources import BatchInputSource, CsvInputSource, InMemoryInputSource

__all__ = [
    "BatchExecutor",
    "BatchInputSource",
    "BatchOrchestrator",
    "BatchRunState",
    "BatchRunStatus",
    "CsvInputSource",
    "DailyPostingResult",
    "InMemoryInputSource",
]
