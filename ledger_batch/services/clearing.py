"""
Clearing file generation for a finished daily posting run.

Contract:
    ``ClearingFileGenerator.render(transactions, processing_date)`` returns
    the clearing extract as text: one fixed-width line per posted
    transaction, or a single no-activity sentinel line when nothing was
    posted.  Sinks decide where the text goes.

Record layout (fields separated by one space):

    <id 16 digits> <account id 11> <amount 14, right> <YYYY-MM-DD>
    <type 2> <category 4> <merchant id 9> <status marker>

Invariants enforced:
    - Record kinds are a closed set; each kind has exactly one renderer in
      ``_RENDERERS``.
    - Output always ends with a newline.
    - DirectoryClearingSink never leaves a partially written file under the
      final name.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from ledger_config.schema import ClearingConfig
from ledger_kernel.domain.values import format_amount
from ledger_kernel.logging_config import get_logger
from ledger_kernel.selectors.ledger_selector import TransactionRecord

logger = get_logger("batch.clearing")


class RecordKind(str, Enum):
    DETAIL = "detail"
    NO_ACTIVITY = "no_activity"


@dataclass(frozen=True)
class ClearingRecord:
    """One line of the clearing extract."""

    kind: RecordKind
    processing_date: date
    transaction: TransactionRecord | None = None


def _render_detail(record: ClearingRecord, config: ClearingConfig) -> str:
    txn = record.transaction
    return " ".join(
        (
            f"{txn.id:016d}",
            f"{txn.account_id:<11}",
            f"{format_amount(txn.amount):>14}",
            record.processing_date.isoformat(),
            f"{txn.type_code:<2}",
            f"{txn.category_code:<4}",
            f"{txn.merchant_id:<9}",
            config.status_marker,
        )
    )


def _render_no_activity(record: ClearingRecord, config: ClearingConfig) -> str:
    return f"{config.sentinel_prefix} {record.processing_date.isoformat()}"


_RENDERERS: dict[RecordKind, Callable[[ClearingRecord, ClearingConfig], str]] = {
    RecordKind.DETAIL: _render_detail,
    RecordKind.NO_ACTIVITY: _render_no_activity,
}


class ClearingFileGenerator:
    """Turns posted transactions into clearing extract text."""

    def __init__(self, config: ClearingConfig | None = None):
        self.config = config or ClearingConfig()

    def records(
        self,
        transactions: Iterable[TransactionRecord],
        processing_date: date,
    ) -> list[ClearingRecord]:
        records = [
            ClearingRecord(RecordKind.DETAIL, processing_date, txn)
            for txn in sorted(transactions, key=lambda t: t.id)
        ]
        if not records:
            records.append(ClearingRecord(RecordKind.NO_ACTIVITY, processing_date))
        return records

    def render(
        self,
        transactions: Iterable[TransactionRecord],
        processing_date: date,
    ) -> str:
        lines = [
            _RENDERERS[record.kind](record, self.config)
            for record in self.records(transactions, processing_date)
        ]
        return "\n".join(lines) + "\n"


# =============================================================================
# Sinks
# =============================================================================


@runtime_checkable
class ClearingFileSink(Protocol):
    def write(self, processing_date: date, blob: str) -> str: ...


def clearing_file_name(processing_date: date) -> str:
    return f"clearing_{processing_date:%Y%m%d}.txt"


class DirectoryClearingSink:
    """Writes ``clearing_<YYYYMMDD>.txt`` into a directory."""

    def __init__(self, output_dir: Path | str):
        self.output_dir = Path(output_dir)

    def write(self, processing_date: date, blob: str) -> str:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        target = self.output_dir / clearing_file_name(processing_date)

        fd, tmp_name = tempfile.mkstemp(dir=self.output_dir, prefix=".clearing_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info(
            "clearing_file_written",
            extra={"path": str(target), "bytes": len(blob.encode("utf-8"))},
        )
        return str(target)


class InMemoryClearingSink:
    """Keeps clearing output in memory, keyed by processing date."""

    def __init__(self):
        self.files: dict[date, str] = {}

    def write(self, processing_date: date, blob: str) -> str:
        self.files[processing_date] = blob
        return clearing_file_name(processing_date)
