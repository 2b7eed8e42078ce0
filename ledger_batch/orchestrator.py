"""
BatchOrchestrator -- DI container for the daily posting batch.

Contract:
    Wires BatchExecutor, ClearingFileGenerator and a ClearingFileSink.  Single
    place where all batch dependencies are composed.  ``run_daily_posting``
    and ``resume_daily_posting`` drive a run and, when it finishes, write the
    clearing extract for its processing date.

Architecture: ledger_batch (top-level).  This is the canonical entry point
    for running the daily posting batch.

Invariants enforced:
    - Clock injection: executor and clearing see the same Clock.
    - The clearing extract is written only for ``completed`` and
      ``completed_with_rejections`` runs, and only contains transactions
      posted by that run.
    - No kernel module imports ledger_batch (the orchestrator lives here).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_batch.domain.types import BatchRunState
from ledger_batch.services.clearing import (
    ClearingFileGenerator,
    ClearingFileSink,
    DirectoryClearingSink,
)
from ledger_batch.services.executor import BatchExecutor, ProcessorFactory
from ledger_batch.sources import BatchInputSource
from ledger_config.schema import BatchConfig, ClearingConfig, LedgerConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.logging_config import get_logger
from ledger_kernel.selectors.ledger_selector import LedgerSelector

logger = get_logger("batch.orchestrator")


@dataclass(frozen=True)
class DailyPostingResult:
    """Final run state plus where the clearing extract went, if written."""

    run: BatchRunState
    clearing_location: str | None = None

    @property
    def clearing_written(self) -> bool:
        return self.clearing_location is not None


class BatchOrchestrator:
    """DI container for the daily posting batch.

    Contract:
        - ``from_config()`` factory creates a fully wired orchestrator.
        - ``executor`` exposes the BatchExecutor (for ``get_run`` and
          ``request_cancel``).

    Non-goals:
        - Does NOT schedule runs -- the caller decides when a day is run.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        batch_config: BatchConfig | None = None,
        clearing_config: ClearingConfig | None = None,
        sink: ClearingFileSink | None = None,
        processor_factory: ProcessorFactory | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._clearing_config = clearing_config or ClearingConfig()
        self._executor = BatchExecutor(
            session_factory,
            clock=self._clock,
            config=batch_config,
            processor_factory=processor_factory,
        )
        self._generator = ClearingFileGenerator(self._clearing_config)
        self._sink = sink or DirectoryClearingSink(self._clearing_config.output_dir)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        sink: ClearingFileSink | None = None,
    ) -> BatchOrchestrator:
        """Create a fully wired BatchOrchestrator from a LedgerConfig.

        Args:
            config: Active configuration (batch and clearing sections used).
            session_factory: Callable returning new sessions, one per chunk.
            clock: Optional clock for deterministic testing.
            sink: Optional sink override.  Defaults to a directory sink on
                ``config.clearing.output_dir``.
        """
        return cls(
            session_factory=session_factory,
            clock=clock,
            batch_config=config.batch,
            clearing_config=config.clearing,
            sink=sink,
        )

    # -------------------------------------------------------------------------
    # Daily posting
    # -------------------------------------------------------------------------

    def run_daily_posting(
        self,
        run_key: str,
        processing_date: date,
        source: BatchInputSource,
        actor_id: str | None = None,
    ) -> DailyPostingResult:
        run = self._executor.start_run(run_key, processing_date, actor_id=actor_id)
        final = self._executor.execute_run(run.run_id, source)
        return self._finish(final)

    def resume_daily_posting(
        self,
        run_id: UUID,
        source: BatchInputSource,
    ) -> DailyPostingResult:
        final = self._executor.resume_run(run_id, source)
        return self._finish(final)

    def write_clearing(self, run: BatchRunState) -> str:
        """Render and write the clearing extract for a finished run."""
        with self._session_factory() as session:
            transactions = LedgerSelector(session).transactions_for_run(run.run_id)
        blob = self._generator.render(transactions, run.processing_date)
        location = self._sink.write(run.processing_date, blob)
        logger.info(
            "clearing_extract_written",
            extra={
                "run_id": str(run.run_id),
                "location": location,
                "record_count": len(transactions),
            },
        )
        return location

    def _finish(self, run: BatchRunState) -> DailyPostingResult:
        if not run.status.is_finished:
            logger.warning(
                "clearing_extract_skipped",
                extra={"run_id": str(run.run_id), "status": run.status.value},
            )
            return DailyPostingResult(run=run)
        return DailyPostingResult(run=run, clearing_location=self.write_clearing(run))

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def executor(self) -> BatchExecutor:
        return self._executor

    @property
    def clearing_generator(self) -> ClearingFileGenerator:
        return self._generator
