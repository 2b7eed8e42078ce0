"""Pure batch domain types."""

from ledger_batch.domain.types import (
    VALID_TRANSITIONS,
    BatchRunState,
    BatchRunStatus,
    ChunkResult,
)

__all__ = [
    "BatchRunState",
    "BatchRunStatus",
    "ChunkResult",
    "VALID_TRANSITIONS",
]
