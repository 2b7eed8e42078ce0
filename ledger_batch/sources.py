"""
Batch input sources.

Contract:
    A ``BatchInputSource`` returns proposals by position: ``read(offset,
    limit)`` yields at most ``limit`` proposals starting at input position
    ``offset``, and an empty list once the input is exhausted.  Positions are
    stable across calls, which is what lets an interrupted run resume from
    its persisted ``next_offset``.

Malformed records never raise: a row with the wrong number of columns, a
bad amount or a bad timestamp becomes a proposal carrying ``input_error``,
which the validator rejects with reason 104.
"""

from __future__ import annotations

import csv
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from ledger_kernel.domain.dtos import INPUT_FIELDS, ProposedTransaction
from ledger_kernel.logging_config import get_logger

logger = get_logger("batch.sources")


@runtime_checkable
class BatchInputSource(Protocol):
    """Positional reader of proposed transactions."""

    def read(self, offset: int, limit: int) -> list[ProposedTransaction]: ...


class InMemoryInputSource:
    """Source over an in-memory sequence of proposals or field mappings."""

    def __init__(self, items: Iterable[ProposedTransaction | Mapping[str, Any]]):
        self._items = [
            item if isinstance(item, ProposedTransaction) else ProposedTransaction.from_fields(item)
            for item in items
        ]

    def __len__(self) -> int:
        return len(self._items)

    def read(self, offset: int, limit: int) -> list[ProposedTransaction]:
        return list(self._items[offset:offset + limit])


class CsvInputSource:
    """
    Source over a delimited daily-transaction file.

    The file must start with a header naming the record columns
    (``INPUT_FIELDS``).  Sequential reads continue from the open file; a read
    at an earlier offset reopens it.
    """

    def __init__(
        self,
        path: Path | str,
        delimiter: str = ",",
        encoding: str = "utf-8",
    ):
        self.path = Path(path)
        self.delimiter = delimiter
        self.encoding = encoding
        self._handle = None
        self._rows: Iterator[list[str]] | None = None
        self._header: list[str] = []
        self._position = 0

    def _open(self) -> None:
        self.close()
        self._handle = open(self.path, newline="", encoding=self.encoding)
        self._rows = csv.reader(self._handle, delimiter=self.delimiter)
        header = next(self._rows, None)
        if header is None:
            self._header = list(INPUT_FIELDS)
            self._position = 0
            return
        self._header = [name.strip() for name in header]
        missing = [name for name in INPUT_FIELDS if name not in self._header]
        if missing:
            self.close()
            raise ValueError(f"{self.path}: header is missing columns {', '.join(missing)}")
        self._position = 0

    def _to_proposal(self, row: list[str]) -> ProposedTransaction:
        fields: dict[str, str] = dict(zip(self._header, row))
        for index, extra in enumerate(row[len(self._header):]):
            fields[f"extra_{index}"] = extra
        proposal = ProposedTransaction.from_fields(fields)
        if len(row) != len(self._header):
            error = f"expected {len(self._header)} columns, got {len(row)}"
            if proposal.input_error:
                error = f"{error}; {proposal.input_error}"
            proposal = replace(proposal, input_error=error)
        return proposal

    def read(self, offset: int, limit: int) -> list[ProposedTransaction]:
        if self._rows is None or offset < self._position:
            self._open()

        batch: list[ProposedTransaction] = []
        for row in self._rows:
            if not row:
                continue
            if self._position < offset:
                self._position += 1
                continue
            self._position += 1
            batch.append(self._to_proposal(row))
            if len(batch) >= limit:
                break

        logger.debug(
            "csv_chunk_read",
            extra={"path": str(self.path), "offset": offset, "count": len(batch)},
        )
        return batch

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._rows = None

    def __enter__(self) -> CsvInputSource:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
