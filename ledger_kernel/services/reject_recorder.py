"""
RejectRecorder -- durable capture of rejected proposals.

Responsibility:
    Persists the untouched input, the reason and a trailer (explanation,
    severity, original field values, rejection time and actor) for every
    rejected proposal, and renders rejects in the legacy reject-file layout.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by TransactionProcessor for every validator rejection.

Invariants enforced:
    - Each call creates a new RejectRecord; identical inputs rejected twice
      produce two records.
    - Records are append-only (db/immutability.py).

Failure modes:
    - RejectRecordingError on any storage failure.  The batch executor
      treats it as fatal: a reject that cannot be recorded must not be
      silently dropped.
"""

import csv
import io
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from ledger_kernel.domain.dtos import (
    INPUT_FIELDS,
    LEGACY_TIMESTAMP_FORMAT,
    ProposedTransaction,
    RejectReason,
    Severity,
)
from ledger_kernel.exceptions import RejectRecordingError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.reject import RejectRecord
from ledger_kernel.services.base import BaseService

logger = get_logger("services.reject_recorder")

REJECT_FILE_HEADER = "Transaction Data,Failure Reason,Failure Description,Rejection Timestamp"


class RejectRecorder(BaseService):
    """Writes RejectRecord rows within the caller's transaction."""

    DEFAULT_ACTOR = "ledger_kernel.batch"

    def record_reject(
        self,
        proposed: ProposedTransaction,
        reason_code: RejectReason | str,
        reason_text: str | None = None,
        severity: Severity | None = None,
        batch_run_id: UUID | None = None,
        input_sequence: int | None = None,
        rejected_by: str | None = None,
    ) -> RejectRecord:
        """
        Persist a reject.

        Args:
            proposed: The rejected proposal, as received.
            reason_code: A RejectReason or a free business-rule code.
            reason_text: Explanation; defaults to the reason's legacy text.
            severity: Defaults to the reason's severity (ERROR otherwise).
            batch_run_id: Owning batch run, if any.
            input_sequence: Zero-based position in the batch input.
            rejected_by: Actor recorded in the trailer.

        Raises:
            RejectRecordingError: If the record cannot be stored.
        """
        if isinstance(reason_code, RejectReason):
            code = reason_code.value
            text = reason_text or reason_code.text
            level = severity or reason_code.severity
        else:
            code = str(reason_code)
            text = reason_text or code
            level = severity or Severity.ERROR

        payload = proposed.to_payload()
        rejected_at = self.clock.now()
        trailer = {
            "explanation": text,
            "severity": level.value,
            "original": payload,
            "input_error": proposed.input_error,
            "rejected_at": rejected_at.isoformat(),
            "rejected_by": rejected_by or self.DEFAULT_ACTOR,
        }

        record = RejectRecord(
            batch_run_id=batch_run_id,
            input_sequence=input_sequence,
            source_reference=proposed.source_reference,
            card_number=proposed.card_number,
            reason_code=code,
            reason_text=text,
            severity=level.value,
            input_payload=payload,
            trailer=trailer,
            rejected_at=rejected_at,
        )

        try:
            with self.session.begin_nested():
                self.session.add(record)
                self.session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "reject_recording_failed",
                extra={"reason_code": code, "source_reference": proposed.source_reference},
                exc_info=True,
            )
            raise RejectRecordingError(code, f"{type(exc).__name__}: {exc}") from exc

        logger.info(
            "reject_recorded",
            extra={
                "reject_id": str(record.id),
                "reason_code": code,
                "severity": level.value,
                "source_reference": proposed.source_reference,
                "input_sequence": input_sequence,
            },
        )
        return record


def _file_code(reason_code: str) -> str:
    try:
        return RejectReason(reason_code).file_code
    except ValueError:
        return reason_code[:4].rjust(4, "0")


def render_reject_line(record: RejectRecord) -> str:
    """
    One line of the legacy reject file (no trailing newline).

    Layout: ``<input data>,<reason code (4 digits)>,<description>,<timestamp>``.
    The input data is the original fields joined with ``|`` in record order.
    """
    payload = record.input_payload or {}
    ordered = [name for name in INPUT_FIELDS if name in payload]
    ordered += [name for name in payload if name not in INPUT_FIELDS]
    data = "|".join("" if payload[name] is None else str(payload[name]) for name in ordered)

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="")
    writer.writerow(
        [
            data,
            _file_code(record.reason_code),
            record.reason_text,
            record.rejected_at.strftime(LEGACY_TIMESTAMP_FORMAT),
        ]
    )
    return buf.getvalue()


def render_reject_file(records: list[RejectRecord]) -> str:
    """Header plus one line per record, newline-terminated."""
    lines = [REJECT_FILE_HEADER]
    lines.extend(render_reject_line(r) for r in records)
    return "\n".join(lines) + "\n"
