"""
ORM model for daily posting run persistence.

Contract:
    BatchRunModel persists one ``BatchRunState`` per run.  ``to_dto()`` /
    ``from_dto()`` round-trip to the frozen domain type; ``apply_state()``
    copies a new state onto a loaded row inside the chunk's transaction.

Architecture: ledger_batch/models. Imports from ledger_kernel.db.base only.

Invariants enforced:
    - ``run_key`` is UNIQUE: one run per business key (e.g. one per
      processing date).
    - The progress marker (``last_committed_chunk``, ``next_offset``) is only
      written in the same transaction as the chunk it describes.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from ledger_batch.domain.types import BatchRunState


class BatchRunModel(TrackedBase):
    """Persistent daily posting run record."""

    __tablename__ = "batch_runs"

    __table_args__ = (
        Index("ix_batch_runs_status", "status"),
        Index("ix_batch_runs_processing_date", "processing_date"),
    )

    run_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    processing_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    chunk_size: Mapped[int] = mapped_column(Integer, nullable=False)
    read_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    posted_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rejected_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_committed_chunk: Mapped[int] = mapped_column(Integer, default=-1, nullable=False)
    next_offset: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    owner_token: Mapped[UUID | None] = mapped_column(nullable=True)

    def to_dto(self) -> BatchRunState:
        from ledger_batch.domain.types import BatchRunState, BatchRunStatus

        return BatchRunState(
            run_id=self.id,
            run_key=self.run_key,
            processing_date=self.processing_date,
            status=BatchRunStatus(self.status),
            chunk_size=self.chunk_size,
            read_count=self.read_count,
            posted_count=self.posted_count,
            rejected_count=self.rejected_count,
            retry_count=self.retry_count,
            last_committed_chunk=self.last_committed_chunk,
            next_offset=self.next_offset,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error_summary=self.error_summary,
            actor_id=self.actor_id,
            owner_token=self.owner_token,
        )

    @classmethod
    def from_dto(cls, dto: BatchRunState) -> BatchRunModel:
        model = cls(id=dto.run_id, run_key=dto.run_key)
        model.apply_state(dto)
        return model

    def apply_state(self, dto: BatchRunState) -> None:
        self.processing_date = dto.processing_date
        self.status = dto.status.value
        self.chunk_size = dto.chunk_size
        self.read_count = dto.read_count
        self.posted_count = dto.posted_count
        self.rejected_count = dto.rejected_count
        self.retry_count = dto.retry_count
        self.last_committed_chunk = dto.last_committed_chunk
        self.next_offset = dto.next_offset
        self.started_at = dto.started_at
        self.completed_at = dto.completed_at
        self.error_summary = dto.error_summary
        self.actor_id = dto.actor_id
        self.owner_token = dto.owner_token

    def __repr__(self) -> str:
        return f"<BatchRunModel {self.run_key} {self.status}>"
