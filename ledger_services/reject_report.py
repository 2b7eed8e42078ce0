"""
RejectReportService -- consumer-facing view of a run's rejects.

Summarizes a daily posting run (processed / posted / rejected counts, per
reason breakdown) and renders the legacy reject file for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_batch.models.batch import BatchRunModel
from ledger_kernel.exceptions import BatchRunNotFoundError
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.reject_recorder import render_reject_file


@dataclass(frozen=True)
class RejectReport:
    run_id: UUID
    status: str
    processed: int
    posted: int
    rejected: int
    by_reason: dict[str, int] = field(default_factory=dict)

    def summary_line(self) -> str:
        return (
            f"{self.processed} transactions processed, "
            f"{self.rejected} rejected, status: {self.status}"
        )


class RejectReportService:
    """Read-only reject reporting for batch runs."""

    def __init__(self, session: Session):
        self._session = session
        self._selector = LedgerSelector(session)

    def summarize(self, run_id: UUID) -> RejectReport:
        run = self._session.get(BatchRunModel, run_id)
        if run is None:
            raise BatchRunNotFoundError(str(run_id))
        return RejectReport(
            run_id=run.id,
            status=run.status,
            processed=run.read_count,
            posted=run.posted_count,
            rejected=run.rejected_count,
            by_reason=self._selector.reject_counts_by_reason(run_id),
        )

    def render_reject_file(self, run_id: UUID) -> str:
        return render_reject_file(self._selector.rejects_for_run(run_id))
