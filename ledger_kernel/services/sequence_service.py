"""
SequenceService -- gapless transaction id allocation via locked counter rows.

Responsibility:
    Provides strictly monotonically increasing sequence numbers, most
    importantly the transaction identifier.  Uses a dedicated counter table
    with row-level locking (``SELECT ... FOR UPDATE``) to guarantee
    uniqueness and ordering under concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Every posting path locks the transaction counter before any account
    row (``lock_transaction_counter``), so the global lock order is
    counter -> account.  The counter lock is held until the caller's
    transaction ends: a batch chunk holds it for the whole chunk, and an
    interactive payment waits for that chunk to commit (at most
    ``chunk_size`` items).

Invariants enforced:
    - next_transaction_id() returns the largest assigned transaction id + 1
      (1 for an empty ledger).  On first use the counter is seeded from
      MAX(transactions.id) so pre-existing history is respected; afterwards
      the locked counter row is the sole source of truth.
    - Transactional: the increment is visible only after the caller's
      transaction commits.  Rollback returns the value, so ids have no gaps.
    - No in-process counter.  Two processes sharing the store allocate from
      the same row.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
    - OperationalError on lock timeout, translated by the caller into
      StorageTimeoutError.
"""

from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter
from ledger_kernel.models.transaction import Transaction

logger = get_logger("services.sequence")


class SequenceService:
    """
    Counter rows read and bumped under ``SELECT ... FOR UPDATE``.

    The caller owns the transaction; an allocation rolled back with it is
    handed out again by the next call.
    """

    TRANSACTION = "transaction"

    def __init__(self, session: Session):
        self._session = session

    def next_transaction_id(self) -> int:
        return self.next_value(self.TRANSACTION, seed=self._highest_transaction_id)

    def lock_transaction_counter(self) -> SequenceCounter:
        """Take the transaction counter lock without allocating.

        Posting paths call this before locking any account row, so every
        writer acquires the counter first and account rows second.
        """
        return self.lock(self.TRANSACTION, seed=self._highest_transaction_id)

    def lock(
        self,
        sequence_name: str,
        seed: Callable[[], int] | None = None,
    ) -> SequenceCounter:
        """
        Lock the counter row of ``sequence_name``, creating it if needed.

        ``seed`` is consulted only when the row does not exist yet and
        returns the highest value already in use (0 when omitted).  The lock
        is held until the caller's transaction ends.
        """
        counter = self._locked(sequence_name)
        if counter is None:
            counter = self._create(sequence_name, seed() if seed else 0)
        return counter

    def next_value(
        self,
        sequence_name: str,
        seed: Callable[[], int] | None = None,
    ) -> int:
        """Allocate the next value of ``sequence_name`` (see ``lock`` for ``seed``)."""
        counter = self.lock(sequence_name, seed)
        counter.current_value += 1
        self._session.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last allocated value, without allocating; None before first use."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one_or_none()

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """Force a counter to ``value``.  Test and data-repair use only."""
        counter = self._locked(sequence_name)
        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value
        self._session.flush()

    def _highest_transaction_id(self) -> int:
        return self._session.execute(
            select(func.coalesce(func.max(Transaction.id), 0))
        ).scalar_one()

    def _locked(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create(self, sequence_name: str, in_use: int) -> SequenceCounter:
        """Insert the counter at ``in_use`` and hold its row.

        A concurrent creator may win the insert; the loser's savepoint rolls
        back and it locks the winner's row instead.
        """
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=sequence_name, current_value=in_use)
                self._session.add(counter)
            return counter
        except IntegrityError:
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": sequence_name})
            counter = self._locked(sequence_name)
            if counter is None:
                raise
            return counter
