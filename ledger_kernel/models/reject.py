"""
Module: ledger_kernel.models.reject
Responsibility: ORM persistence for rejected transaction proposals.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - A reject row is never updated or deleted (db/immutability.py).
    - Every rejection creates a new row with a fresh UUID; rejecting the
      same input twice yields two independent records.

Audit relevance:
    ``input_payload`` is the input exactly as received (amounts as strings);
    ``trailer`` carries the explanation, severity, original field values and
    who rejected it when.  Together they let an operator correct and
    resubmit the record without consulting any other source.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class RejectRecord(Base):
    """A rejected input with its reason and trailer."""

    __tablename__ = "reject_records"

    __table_args__ = (
        Index("idx_reject_batch_run", "batch_run_id", "input_sequence"),
        Index("idx_reject_reason", "reason_code"),
    )

    batch_run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Zero-based position of the record in the batch input
    input_sequence: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    source_reference: Mapped[str | None] = mapped_column(String(50), nullable=True)
    card_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    reason_code: Mapped[str] = mapped_column(String(20), nullable=False)
    reason_text: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)

    input_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    trailer: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    rejected_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<RejectRecord {self.id} {self.reason_code}>"
