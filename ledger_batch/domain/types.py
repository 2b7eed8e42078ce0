"""
ledger_batch.domain.types -- Pure frozen dataclasses for the batch system.

ZERO I/O.  The executor never carries run progress in local variables across
chunks: each chunk starts from a ``BatchRunState`` and produces the next one,
and that value is what gets persisted with the chunk's commit.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable).
    - Status changes go through ``transition()``, which rejects moves not
      listed in VALID_TRANSITIONS.
    - ``last_committed_chunk`` / ``next_offset`` only move forward.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from ledger_kernel.exceptions import BatchRunStateError, BatchRunSupersededError


# =============================================================================
# Status enum
# =============================================================================


class BatchRunStatus(str, Enum):
    """Run-level lifecycle status."""

    IDLE = "idle"  # Created, not yet started
    RUNNING = "running"  # Execution in progress (or crashed mid-run)
    COMPLETED = "completed"  # Input exhausted, nothing rejected
    COMPLETED_WITH_REJECTIONS = "completed_with_rejections"
    ERROR = "error"  # Retries exhausted or fatal failure
    CANCELLED = "cancelled"  # Stopped at a chunk boundary on request

    @property
    def is_finished(self) -> bool:
        return self in (BatchRunStatus.COMPLETED, BatchRunStatus.COMPLETED_WITH_REJECTIONS)

    @property
    def is_resumable(self) -> bool:
        return self in (BatchRunStatus.RUNNING, BatchRunStatus.ERROR, BatchRunStatus.CANCELLED)


VALID_TRANSITIONS: dict[BatchRunStatus, frozenset[BatchRunStatus]] = {
    BatchRunStatus.IDLE: frozenset({BatchRunStatus.RUNNING}),
    BatchRunStatus.RUNNING: frozenset(
        {
            BatchRunStatus.RUNNING,
            BatchRunStatus.COMPLETED,
            BatchRunStatus.COMPLETED_WITH_REJECTIONS,
            BatchRunStatus.ERROR,
            BatchRunStatus.CANCELLED,
        }
    ),
    BatchRunStatus.ERROR: frozenset({BatchRunStatus.RUNNING}),
    BatchRunStatus.CANCELLED: frozenset({BatchRunStatus.RUNNING}),
    BatchRunStatus.COMPLETED: frozenset(),
    BatchRunStatus.COMPLETED_WITH_REJECTIONS: frozenset(),
}


# =============================================================================
# Run state
# =============================================================================


@dataclass(frozen=True)
class BatchRunState:
    """Immutable snapshot of a daily posting run.

    ``last_committed_chunk`` is -1 before the first chunk commits.
    ``next_offset`` is the input position the next chunk starts at; on
    resume, reading continues from there.
    ``owner_token`` identifies the start or resume that currently drives the
    run; each start and resume replaces it.
    """

    run_id: UUID
    run_key: str
    processing_date: date
    status: BatchRunStatus
    chunk_size: int
    read_count: int = 0
    posted_count: int = 0
    rejected_count: int = 0
    retry_count: int = 0
    last_committed_chunk: int = -1
    next_offset: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_summary: str | None = None
    actor_id: str | None = None
    owner_token: UUID | None = None

    def transition(self, target: BatchRunStatus, operation: str) -> BatchRunState:
        if target not in VALID_TRANSITIONS[self.status]:
            raise BatchRunStateError(str(self.run_id), self.status.value, operation)
        return replace(self, status=target)

    def start(self, now: datetime, owner: UUID | None = None) -> BatchRunState:
        """idle -> running with zero counts."""
        state = self.transition(BatchRunStatus.RUNNING, "start")
        return replace(
            state,
            read_count=0,
            posted_count=0,
            rejected_count=0,
            retry_count=0,
            last_committed_chunk=-1,
            next_offset=0,
            started_at=now,
            completed_at=None,
            error_summary=None,
            owner_token=owner,
        )

    def resume(self, owner: UUID | None = None) -> BatchRunState:
        """Interrupted run -> running, progress marker untouched."""
        if not self.status.is_resumable:
            raise BatchRunStateError(str(self.run_id), self.status.value, "resume")
        return replace(
            self,
            status=BatchRunStatus.RUNNING,
            completed_at=None,
            error_summary=None,
            owner_token=owner,
        )

    def ensure_current(self, stored: BatchRunState, operation: str) -> None:
        """Check that the locked row ``stored`` is still the state this one holds.

        A different owner token or progress marker means another start or
        resume has taken the run over since this state was read.
        """
        if stored.owner_token != self.owner_token:
            detail = "run resumed by another executor"
        elif (stored.last_committed_chunk, stored.next_offset) != (
            self.last_committed_chunk,
            self.next_offset,
        ):
            detail = (
                f"stored progress chunk {stored.last_committed_chunk} offset "
                f"{stored.next_offset}, expected chunk {self.last_committed_chunk} "
                f"offset {self.next_offset}"
            )
        elif stored.status != self.status:
            detail = f"stored status {stored.status.value}"
        else:
            return
        raise BatchRunSupersededError(
            str(self.run_id), stored.status.value, operation, detail
        )

    def after_chunk(self, result: ChunkResult) -> BatchRunState:
        if self.status != BatchRunStatus.RUNNING:
            raise BatchRunStateError(str(self.run_id), self.status.value, "commit chunk")
        if result.chunk_index != self.last_committed_chunk + 1 or result.offset != self.next_offset:
            raise BatchRunStateError(
                str(self.run_id), self.status.value, f"commit chunk {result.chunk_index} out of order"
            )
        return replace(
            self,
            read_count=self.read_count + result.read,
            posted_count=self.posted_count + result.posted,
            rejected_count=self.rejected_count + result.rejected,
            retry_count=self.retry_count + result.retries,
            last_committed_chunk=result.chunk_index,
            next_offset=self.next_offset + result.read,
        )

    def finish(self, now: datetime) -> BatchRunState:
        target = (
            BatchRunStatus.COMPLETED
            if self.rejected_count == 0
            else BatchRunStatus.COMPLETED_WITH_REJECTIONS
        )
        return replace(self.transition(target, "finish"), completed_at=now)

    def fail(self, now: datetime, summary: str, extra_retries: int = 0) -> BatchRunState:
        return replace(
            self.transition(BatchRunStatus.ERROR, "fail"),
            completed_at=now,
            error_summary=summary,
            retry_count=self.retry_count + extra_retries,
        )

    def cancel(self, now: datetime) -> BatchRunState:
        return replace(
            self.transition(BatchRunStatus.CANCELLED, "cancel"),
            completed_at=now,
            error_summary="Cancelled at chunk boundary",
        )


@dataclass(frozen=True)
class ChunkResult:
    """Counts for one committed chunk."""

    chunk_index: int
    offset: int
    read: int
    posted: int
    rejected: int
    retries: int = 0
