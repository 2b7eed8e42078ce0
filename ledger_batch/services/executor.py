"""
BatchExecutor -- chunked daily posting run with SAVEPOINT-per-item isolation.

Contract:
    Drives a daily posting run through its lifecycle:
    ``start_run`` (idempotent key) -> ``execute_run`` / ``resume_run`` ->
    ``get_run``.  ``request_cancel`` stops a run at the next chunk boundary.

Architecture: ledger_batch/services.  Imports from ledger_batch.domain,
    ledger_batch.models, ledger_batch.sources and kernel services.

Invariants enforced:
    - Each chunk is one database transaction.  Items run in their own
      SAVEPOINT; the run row's counts and progress marker are written in the
      same transaction and committed with the chunk.
    - Items are processed in input order; commits happen only on the
      executor thread, even when chunk reading runs ahead.
    - Only PostingError / StorageError are retried, at most
      ``item_retry_limit`` times per item and ``skip_limit`` times per run.
    - RejectRecordingError is fatal: the chunk rolls back, the run is marked
      error and the exception propagates.
    - Each start or resume writes a fresh owner token.  Every chunk commit
      and status change re-reads the run row under its lock and proceeds
      only if the token and progress marker still match, so two executors
      resuming one run never commit the same chunk twice.
    - Transaction ids come from SequenceService; the counter row is locked
      before any account row (see TransactionProcessor).

Failure modes:
    - BatchIdempotencyError: run key already used.
    - BatchRunNotFoundError: unknown run id.
    - BatchRunStateError: operation not allowed in the run's status.
    - BatchRunSupersededError: another start or resume took the run over;
      this executor's uncommitted chunk is rolled back and the run row is
      left untouched.
    - RejectRecordingError: propagated after the run is marked error.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_batch.domain.types import BatchRunState, BatchRunStatus, ChunkResult
from ledger_batch.models.batch import BatchRunModel
from ledger_batch.sources import BatchInputSource
from ledger_config.schema import BatchConfig
from ledger_kernel.db.errors import translate_storage_error
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import ProposedTransaction
from ledger_kernel.exceptions import (
    BatchIdempotencyError,
    BatchRetryExhaustedError,
    BatchRunNotFoundError,
    BatchRunSupersededError,
    PostingError,
    RejectRecordingError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.transaction_processor import (
    ProcessingOutcome,
    TransactionProcessor,
)

logger = get_logger("batch.executor")

ProcessorFactory = Callable[[Session, Clock], TransactionProcessor]


class _ChunkReader:
    """Reads consecutive chunks from a source, optionally one chunk ahead.

    The prefetch runs on a single worker thread, so the source only ever
    sees sequential, non-overlapping ``read`` calls.
    """

    def __init__(
        self,
        source: BatchInputSource,
        chunk_size: int,
        start_offset: int,
        read_ahead: bool,
    ):
        self._source = source
        self._chunk_size = chunk_size
        self._offset = start_offset
        self._pool = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch-read-ahead")
            if read_ahead
            else None
        )
        self._pending: Future | None = None

    def _read(self, offset: int) -> list[ProposedTransaction]:
        return self._source.read(offset, self._chunk_size)

    def next_chunk(self) -> tuple[int, list[ProposedTransaction]]:
        offset = self._offset
        if self._pending is not None:
            items = self._pending.result()
            self._pending = None
        else:
            items = self._read(offset)
        self._offset = offset + len(items)

        if self._pool is not None and len(items) == self._chunk_size:
            self._pending = self._pool.submit(self._read, self._offset)
        return offset, items

    def close(self) -> None:
        if self._pool is not None:
            if self._pending is not None:
                self._pending.cancel()
            self._pool.shutdown(wait=True)
            self._pool = None
        self._pending = None


def _default_processor_factory(session: Session, clock: Clock) -> TransactionProcessor:
    return TransactionProcessor(session, clock)


class BatchExecutor:
    """Daily posting run engine.

    Contract:
        - ``start_run()`` creates an IDLE run (unique ``run_key``).
        - ``execute_run()`` / ``resume_run()`` process the source to the
          end, a cancel request, or an error, and return the final state.
        - ``get_run()`` is available at any time, including after completion.

    Non-goals:
        - Does NOT schedule runs or write the clearing extract -- that is
          the orchestrator's job.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        config: BatchConfig | None = None,
        processor_factory: ProcessorFactory | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or BatchConfig()
        self._processor_factory = processor_factory or _default_processor_factory
        self._cancel = threading.Event()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start_run(
        self,
        run_key: str,
        processing_date: date,
        actor_id: str | None = None,
    ) -> BatchRunState:
        """Create a new IDLE run.

        Raises:
            BatchIdempotencyError: If ``run_key`` is already used.
        """
        state = BatchRunState(
            run_id=uuid4(),
            run_key=run_key,
            processing_date=processing_date,
            status=BatchRunStatus.IDLE,
            chunk_size=self._config.chunk_size,
            actor_id=actor_id,
        )
        with self._session_factory() as session:
            existing = session.execute(
                select(BatchRunModel.id).where(BatchRunModel.run_key == run_key)
            ).scalar_one_or_none()
            if existing is not None:
                raise BatchIdempotencyError(run_key, str(existing))

            session.add(BatchRunModel.from_dto(state))
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                existing = session.execute(
                    select(BatchRunModel.id).where(BatchRunModel.run_key == run_key)
                ).scalar_one_or_none()
                raise BatchIdempotencyError(run_key, str(existing)) from exc

        logger.info(
            "batch_run_created",
            extra={
                "run_id": str(state.run_id),
                "run_key": run_key,
                "processing_date": processing_date.isoformat(),
            },
        )
        return state

    def get_run(self, run_id: UUID) -> BatchRunState:
        with self._session_factory() as session:
            model = session.get(BatchRunModel, run_id)
            if model is None:
                raise BatchRunNotFoundError(str(run_id))
            return model.to_dto()

    def request_cancel(self) -> None:
        """Stop the current run before its next chunk.

        A request made before ``execute_run`` / ``resume_run`` starts applies
        to that run, which then stops before its first chunk.
        """
        self._cancel.set()
        logger.info("batch_cancel_requested")

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def execute_run(self, run_id: UUID, source: BatchInputSource) -> BatchRunState:
        """Run an IDLE run over ``source`` from the first record."""
        owner = uuid4()
        state = self._transition(run_id, "start", lambda s: s.start(self._clock.now(), owner))
        logger.info(
            "batch_run_started",
            extra={"run_id": str(run_id), "chunk_size": state.chunk_size},
        )
        return self._process(state, source)

    def resume_run(self, run_id: UUID, source: BatchInputSource) -> BatchRunState:
        """Continue an interrupted run from its persisted ``next_offset``."""
        owner = uuid4()
        state = self._transition(run_id, "resume", lambda s: s.resume(owner))
        logger.info(
            "batch_run_resumed",
            extra={
                "run_id": str(run_id),
                "next_offset": state.next_offset,
                "last_committed_chunk": state.last_committed_chunk,
            },
        )
        return self._process(state, source)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _transition(
        self,
        run_id: UUID,
        operation: str,
        change: Callable[[BatchRunState], BatchRunState],
        expected: BatchRunState | None = None,
    ) -> BatchRunState:
        """Apply ``change`` to the run row under its lock and commit.

        With ``expected``, the row must still be the state this executor
        last wrote; otherwise BatchRunSupersededError is raised and nothing
        is written.
        """
        with self._session_factory() as session:
            model = session.get(BatchRunModel, run_id, with_for_update=True)
            if model is None:
                raise BatchRunNotFoundError(str(run_id))
            stored = model.to_dto()
            if expected is not None:
                expected.ensure_current(stored, operation)
            state = change(stored)
            model.apply_state(state)
            session.commit()
        return state

    def _process(self, state: BatchRunState, source: BatchInputSource) -> BatchRunState:
        # A cancel requested before this point applies to this run; the flag
        # is cleared once the run stops driving.
        try:
            with LogContext.bind(run_id=str(state.run_id), actor_id=state.actor_id):
                return self._drive(state, source)
        finally:
            self._cancel.clear()

    def _drive(self, state: BatchRunState, source: BatchInputSource) -> BatchRunState:
        run_id = state.run_id
        reader = _ChunkReader(
            source,
            state.chunk_size,
            state.next_offset,
            self._config.read_ahead,
        )

        try:
            while True:
                if self._cancel.is_set():
                    state = self._transition(
                        run_id, "cancel", lambda s: s.cancel(self._clock.now()), expected=state,
                    )
                    logger.warning(
                        "batch_run_cancelled",
                        extra={"run_id": str(run_id), "next_offset": state.next_offset},
                    )
                    return state

                offset, items = reader.next_chunk()
                if not items:
                    break
                state = self._commit_chunk(state, offset, items)

        except BatchRunSupersededError as exc:
            logger.warning(
                "batch_run_superseded",
                extra={"run_id": str(run_id), "detail": exc.detail},
            )
            raise
        except BatchRetryExhaustedError as exc:
            state = self._fail(state, str(exc))
            logger.error(
                "batch_retry_exhausted",
                extra={
                    "run_id": str(run_id),
                    "input_sequence": exc.input_sequence,
                    "attempts": exc.attempts,
                    "cause": exc.cause,
                },
            )
            return state
        except Exception as exc:
            try:
                self._fail(state, str(exc))
            except BatchRunSupersededError as superseded:
                # The run has a new owner; its row is not ours to mark
                logger.warning(
                    "batch_run_superseded",
                    extra={"run_id": str(run_id), "detail": superseded.detail},
                )
            logger.error(
                "batch_run_failed",
                extra={
                    "run_id": str(run_id),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise
        finally:
            reader.close()

        state = self._transition(
            run_id, "finish", lambda s: s.finish(self._clock.now()), expected=state,
        )
        logger.info(
            "batch_run_completed",
            extra={
                "run_id": str(run_id),
                "status": state.status.value,
                "read_count": state.read_count,
                "posted_count": state.posted_count,
                "rejected_count": state.rejected_count,
                "retry_count": state.retry_count,
            },
        )
        return state

    def _fail(self, state: BatchRunState, summary: str) -> BatchRunState:
        return self._transition(
            state.run_id, "fail", lambda s: s.fail(self._clock.now(), summary), expected=state,
        )

    def _commit_chunk(
        self,
        state: BatchRunState,
        offset: int,
        items: list[ProposedTransaction],
    ) -> BatchRunState:
        chunk_index = state.last_committed_chunk + 1
        t0 = time.monotonic()
        session = self._session_factory()
        try:
            processor = self._processor_factory(session, self._clock)
            posted = rejected = retries = 0

            for position, proposed in enumerate(items):
                input_sequence = offset + position
                outcome, used = self._process_item(
                    session,
                    processor,
                    state,
                    proposed,
                    input_sequence,
                    state.retry_count + retries,
                )
                retries += used
                if outcome.posted:
                    posted += 1
                else:
                    rejected += 1

            result = ChunkResult(
                chunk_index=chunk_index,
                offset=offset,
                read=len(items),
                posted=posted,
                rejected=rejected,
                retries=retries,
            )
            new_state = state.after_chunk(result)

            model = session.get(
                BatchRunModel,
                state.run_id,
                with_for_update=True,
                populate_existing=True,
            )
            if model is None:
                raise BatchRunNotFoundError(str(state.run_id))
            state.ensure_current(model.to_dto(), "commit chunk")
            model.apply_state(new_state)
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info(
            "batch_chunk_committed",
            extra={
                "run_id": str(state.run_id),
                "chunk_index": chunk_index,
                "offset": offset,
                "read": result.read,
                "posted": posted,
                "rejected": rejected,
                "retries": retries,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return new_state

    def _process_item(
        self,
        session: Session,
        processor: TransactionProcessor,
        state: BatchRunState,
        proposed: ProposedTransaction,
        input_sequence: int,
        run_retries: int,
    ) -> tuple[ProcessingOutcome, int]:
        """Process one item in its own SAVEPOINT, retrying posting failures.

        Returns the outcome and the number of retries used.
        """
        attempts = 0
        while True:
            try:
                try:
                    with session.begin_nested():
                        outcome = processor.process(
                            proposed,
                            state.processing_date,
                            batch_run_id=state.run_id,
                            input_sequence=input_sequence,
                        )
                except SQLAlchemyError as exc:
                    raise translate_storage_error(exc, "batch_item") from exc
                return outcome, attempts
            except RejectRecordingError:
                raise
            except PostingError as exc:
                attempts += 1
                if attempts > self._config.item_retry_limit or run_retries + attempts > self._config.skip_limit:
                    raise BatchRetryExhaustedError(
                        str(state.run_id), input_sequence, attempts, str(exc),
                    ) from exc
                logger.warning(
                    "batch_item_retry",
                    extra={
                        "run_id": str(state.run_id),
                        "input_sequence": input_sequence,
                        "attempt": attempts,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
