"""
Tests for ledger_batch.services.executor.

Validates BatchExecutor: start_run idempotency, chunked execution with a
SAVEPOINT per item, counts and progress marker, cancel / resume, retry
bounds, and fatal reject-recording failures.

Uses temp-file SQLite; every verification reads through a fresh session
because the executor commits from its own sessions.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from ledger_batch.domain.types import BatchRunStatus
from ledger_batch.services.executor import BatchExecutor
from ledger_batch.sources import InMemoryInputSource
from ledger_config.schema import BatchConfig
from ledger_kernel.exceptions import (
    BatchIdempotencyError,
    BatchRunNotFoundError,
    BatchRunStateError,
    BatchRunSupersededError,
    RejectRecordingError,
)
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.services.reject_recorder import RejectRecorder


@pytest.fixture
def executor(session_factory, deterministic_clock, batch_config) -> BatchExecutor:
    return BatchExecutor(session_factory, deterministic_clock, batch_config)


@pytest.fixture
def purchases(make_proposal):
    def _purchases(*amounts: str):
        return [
            make_proposal(amount, source_reference=f"REF{i:04d}")
            for i, amount in enumerate(amounts)
        ]

    return _purchases


def _balance(session_factory, account_id: str) -> Decimal:
    with session_factory() as s:
        return s.get(Account, account_id).current_balance


def _transactions(session_factory, run_id):
    with session_factory() as s:
        return LedgerSelector(s).transactions_for_run(run_id)


class _CancellingSource:
    """Requests cancellation while the first chunk is being read."""

    def __init__(self, inner, executor):
        self.inner = inner
        self.executor = executor

    def read(self, offset, limit):
        if offset == 0:
            self.executor.request_cancel()
        return self.inner.read(offset, limit)


class _TakeoverSource:
    """Lets a second executor resume the run while the first chunk is read."""

    def __init__(self, inner, other, run_id):
        self.inner = inner
        self.other = other
        self.run_id = run_id
        self.taken_over = None

    def read(self, offset, limit):
        if offset == 0 and self.taken_over is None:
            self.taken_over = self.other.resume_run(self.run_id, self.inner)
        return self.inner.read(offset, limit)


def _database_locked():
    return OperationalError("UPDATE accounts", {}, Exception("database is locked"))


# =============================================================================
# start_run / get_run
# =============================================================================


class TestStartRun:
    def test_creates_idle_run(self, executor, processing_date):
        run = executor.start_run("daily-2024-01-01", processing_date, actor_id="ops")
        stored = executor.get_run(run.run_id)

        assert stored.status is BatchRunStatus.IDLE
        assert stored.run_key == "daily-2024-01-01"
        assert stored.processing_date == processing_date
        assert stored.chunk_size == 2
        assert stored.actor_id == "ops"

    def test_duplicate_key_rejected(self, executor, processing_date):
        first = executor.start_run("daily-2024-01-01", processing_date)
        with pytest.raises(BatchIdempotencyError) as exc_info:
            executor.start_run("daily-2024-01-01", processing_date)
        assert exc_info.value.existing_run_id == str(first.run_id)

    def test_unknown_run(self, executor):
        with pytest.raises(BatchRunNotFoundError):
            executor.get_run(uuid4())


# =============================================================================
# execute_run
# =============================================================================


class TestExecuteRun:
    def test_all_posted(self, executor, default_account, processing_date, purchases, session_factory):
        run = executor.start_run("r1", processing_date)
        final = executor.execute_run(run.run_id, InMemoryInputSource(purchases("10.00", "20.00", "30.00")))

        assert final.status is BatchRunStatus.COMPLETED
        assert (final.read_count, final.posted_count, final.rejected_count) == (3, 3, 0)
        assert final.last_committed_chunk == 1
        assert final.next_offset == 3
        assert executor.get_run(run.run_id).posted_count == 3
        assert _balance(session_factory, default_account) == Decimal("60.00")

    def test_postings_follow_input_order(
        self, executor, default_account, processing_date, purchases, session_factory,
    ):
        run = executor.start_run("r1", processing_date)
        executor.execute_run(run.run_id, InMemoryInputSource(purchases(*["1.00"] * 5)))

        txns = _transactions(session_factory, run.run_id)
        assert [t.id for t in txns] == [1, 2, 3, 4, 5]
        assert [t.source_reference for t in txns] == [f"REF{i:04d}" for i in range(5)]
        assert all(t.batch_run_id == run.run_id for t in txns)

    def test_over_limit_item_rejected(
        self, executor, create_account, processing_date, purchases, session_factory,
    ):
        account_id = create_account(balance="1900.00", credit_limit="2000.00")
        run = executor.start_run("r1", processing_date)
        final = executor.execute_run(run.run_id, InMemoryInputSource(purchases("200.00")))

        assert final.status is BatchRunStatus.COMPLETED_WITH_REJECTIONS
        assert (final.posted_count, final.rejected_count) == (0, 1)
        assert _balance(session_factory, account_id) == Decimal("1900.00")
        with session_factory() as s:
            rejects = LedgerSelector(s).rejects_for_run(run.run_id)
        assert [r.reason_code for r in rejects] == ["102"]
        assert rejects[0].input_sequence == 0

    def test_debit_below_legacy_range_rejected_not_fatal(
        self, executor, create_account, processing_date, purchases, session_factory,
    ):
        account_id = create_account(balance="-9999999999.00")
        run = executor.start_run("r1", processing_date)
        final = executor.execute_run(run.run_id, InMemoryInputSource(purchases("-5.00", "1.00")))

        assert final.status is BatchRunStatus.COMPLETED_WITH_REJECTIONS
        assert (final.posted_count, final.rejected_count) == (1, 1)
        with session_factory() as s:
            assert LedgerSelector(s).reject_counts_by_reason(run.run_id) == {"104": 1}
        assert _balance(session_factory, account_id) == Decimal("-9999999998.00")

    def test_empty_input(self, executor, processing_date):
        run = executor.start_run("r1", processing_date)
        final = executor.execute_run(run.run_id, InMemoryInputSource([]))

        assert final.status is BatchRunStatus.COMPLETED
        assert (final.read_count, final.posted_count, final.rejected_count) == (0, 0, 0)
        assert final.last_committed_chunk == -1

    def test_mixed_outcomes(
        self, executor, default_account, processing_date, make_proposal, session_factory,
    ):
        items = [
            make_proposal("10.00"),
            make_proposal("10.00", card_number="4999999999999999"),
            make_proposal(amount=None),
            make_proposal("5.00"),
        ]
        run = executor.start_run("r1", processing_date)
        final = executor.execute_run(run.run_id, InMemoryInputSource(items))

        assert (final.posted_count, final.rejected_count) == (2, 2)
        with session_factory() as s:
            assert LedgerSelector(s).reject_counts_by_reason(run.run_id) == {"100": 1, "104": 1}
        assert _balance(session_factory, default_account) == Decimal("15.00")

    def test_expired_account_rejected_against_processing_date(
        self, executor, create_account, purchases, session_factory,
    ):
        create_account(expiration_date=date(2024, 1, 14))
        run = executor.start_run("r1", date(2024, 1, 15))
        final = executor.execute_run(run.run_id, InMemoryInputSource(purchases("1.00")))

        assert final.rejected_count == 1
        with session_factory() as s:
            assert LedgerSelector(s).reject_counts_by_reason(run.run_id) == {"103": 1}

    def test_cannot_execute_twice(self, executor, processing_date):
        run = executor.start_run("r1", processing_date)
        executor.execute_run(run.run_id, InMemoryInputSource([]))
        with pytest.raises(BatchRunStateError):
            executor.execute_run(run.run_id, InMemoryInputSource([]))

    def test_read_ahead_keeps_order(
        self, session_factory, deterministic_clock, default_account, processing_date, purchases,
    ):
        executor = BatchExecutor(
            session_factory, deterministic_clock, BatchConfig(chunk_size=2, read_ahead=True)
        )
        run = executor.start_run("r1", processing_date)
        final = executor.execute_run(run.run_id, InMemoryInputSource(purchases(*["1.00"] * 7)))

        assert final.posted_count == 7
        assert final.last_committed_chunk == 3
        txns = _transactions(session_factory, run.run_id)
        assert [t.source_reference for t in txns] == [f"REF{i:04d}" for i in range(7)]

    def test_chunk_commit_logged_with_run_context(
        self, executor, default_account, processing_date, purchases, captured_logs,
    ):
        run = executor.start_run("r1", processing_date)
        executor.execute_run(run.run_id, InMemoryInputSource(purchases("1.00", "2.00", "3.00")))

        chunks = [r for r in captured_logs() if r["message"] == "batch_chunk_committed"]
        assert [c["chunk_index"] for c in chunks] == [0, 1]
        assert all(c["run_id"] == str(run.run_id) for c in chunks)
        assert any(r["message"] == "batch_run_completed" for r in captured_logs())


# =============================================================================
# Cancel / resume
# =============================================================================


class TestCancelAndResume:
    def test_cancel_stops_at_chunk_boundary(
        self, executor, default_account, processing_date, purchases, session_factory,
    ):
        source = InMemoryInputSource(purchases(*["1.00"] * 6))
        run = executor.start_run("r1", processing_date)
        final = executor.execute_run(run.run_id, _CancellingSource(source, executor))

        assert final.status is BatchRunStatus.CANCELLED
        assert final.posted_count == 2
        assert final.next_offset == 2
        assert _balance(session_factory, default_account) == Decimal("2.00")

    def test_resume_after_cancel_processes_only_the_rest(
        self, executor, default_account, processing_date, purchases, session_factory,
    ):
        source = InMemoryInputSource(purchases(*["1.00"] * 6))
        run = executor.start_run("r1", processing_date)
        executor.execute_run(run.run_id, _CancellingSource(source, executor))

        final = executor.resume_run(run.run_id, source)

        assert final.status is BatchRunStatus.COMPLETED
        assert (final.read_count, final.posted_count) == (6, 6)
        txns = _transactions(session_factory, run.run_id)
        assert [t.id for t in txns] == [1, 2, 3, 4, 5, 6]
        assert _balance(session_factory, default_account) == Decimal("6.00")

    def test_cancel_requested_before_run_applies_to_it(
        self, executor, default_account, processing_date, purchases, session_factory,
    ):
        source = InMemoryInputSource(purchases("1.00", "2.00", "3.00"))
        run = executor.start_run("r1", processing_date)

        executor.request_cancel()
        cancelled = executor.execute_run(run.run_id, source)

        assert cancelled.status is BatchRunStatus.CANCELLED
        assert (cancelled.read_count, cancelled.next_offset) == (0, 0)
        assert _transactions(session_factory, run.run_id) == []
        assert not executor.cancel_requested

        final = executor.resume_run(run.run_id, source)
        assert final.status is BatchRunStatus.COMPLETED
        assert final.posted_count == 3
        assert _balance(session_factory, default_account) == Decimal("6.00")

    def test_cancel_flag_cleared_when_run_ends(self, executor, processing_date):
        run = executor.start_run("r1", processing_date)
        executor.execute_run(run.run_id, InMemoryInputSource([]))
        assert not executor.cancel_requested

    def test_completed_run_not_resumable(self, executor, processing_date):
        run = executor.start_run("r1", processing_date)
        executor.execute_run(run.run_id, InMemoryInputSource([]))
        with pytest.raises(BatchRunStateError):
            executor.resume_run(run.run_id, InMemoryInputSource([]))


# =============================================================================
# Superseded runs
# =============================================================================


class TestSupersededRun:
    def test_stale_executor_cannot_commit_after_resume(
        self, session_factory, deterministic_clock, batch_config, default_account,
        processing_date, purchases, captured_logs,
    ):
        first = BatchExecutor(session_factory, deterministic_clock, batch_config)
        second = BatchExecutor(session_factory, deterministic_clock, batch_config)
        inner = InMemoryInputSource(purchases("1.00", "1.00", "1.00"))
        run = first.start_run("r1", processing_date)
        source = _TakeoverSource(inner, second, run.run_id)

        with pytest.raises(BatchRunSupersededError):
            first.execute_run(run.run_id, source)

        assert source.taken_over.status is BatchRunStatus.COMPLETED
        final = first.get_run(run.run_id)
        assert final.status is BatchRunStatus.COMPLETED
        assert (final.read_count, final.posted_count) == (3, 3)
        assert [t.id for t in _transactions(session_factory, run.run_id)] == [1, 2, 3]
        assert _balance(session_factory, default_account) == Decimal("3.00")

        superseded = [r for r in captured_logs() if r["message"] == "batch_run_superseded"]
        assert len(superseded) == 1
        assert "another executor" in superseded[0]["detail"]
        assert not [r for r in captured_logs() if r["message"] == "batch_run_failed"]

    def test_resumed_run_owned_by_new_executor(
        self, session_factory, deterministic_clock, batch_config, default_account,
        processing_date, purchases,
    ):
        first = BatchExecutor(session_factory, deterministic_clock, batch_config)
        second = BatchExecutor(session_factory, deterministic_clock, batch_config)
        source = InMemoryInputSource(purchases("1.00"))
        run = first.start_run("r1", processing_date)
        first.request_cancel()
        cancelled = first.execute_run(run.run_id, source)

        resumed = second.resume_run(run.run_id, source)

        assert resumed.owner_token is not None
        assert resumed.owner_token != cancelled.owner_token


# =============================================================================
# Retry bounds
# =============================================================================


class TestRetries:
    def test_transient_failure_retried(
        self, executor, default_account, processing_date, purchases, session_factory,
    ):
        original = PostingEngine._apply_to_account
        calls = {"n": 0}

        def flaky(self, account, amount):
            calls["n"] += 1
            if calls["n"] == 1:
                raise _database_locked()
            return original(self, account, amount)

        run = executor.start_run("r1", processing_date)
        with patch.object(PostingEngine, "_apply_to_account", autospec=True, side_effect=flaky):
            final = executor.execute_run(run.run_id, InMemoryInputSource(purchases("7.00")))

        assert final.status is BatchRunStatus.COMPLETED
        assert final.posted_count == 1
        assert final.retry_count == 1
        assert [t.id for t in _transactions(session_factory, run.run_id)] == [1]
        assert _balance(session_factory, default_account) == Decimal("7.00")

    def test_exhausted_retries_mark_run_error(
        self, executor, default_account, processing_date, purchases, session_factory, captured_logs,
    ):
        original = PostingEngine._apply_to_account

        def failing_on_third(self, account, amount):
            if amount == Decimal("3.00"):
                raise _database_locked()
            return original(self, account, amount)

        run = executor.start_run("r1", processing_date)
        items = InMemoryInputSource(purchases("1.00", "2.00", "3.00", "4.00"))
        with patch.object(PostingEngine, "_apply_to_account", autospec=True, side_effect=failing_on_third):
            final = executor.execute_run(run.run_id, items)

        assert final.status is BatchRunStatus.ERROR
        assert "after 3 attempt(s)" in final.error_summary
        # First chunk stays committed, the failing chunk is rolled back
        assert final.last_committed_chunk == 0
        assert final.next_offset == 2
        assert final.posted_count == 2
        assert _balance(session_factory, default_account) == Decimal("3.00")
        assert any(r["message"] == "batch_retry_exhausted" for r in captured_logs())

    def test_resume_after_error_leaves_no_gaps(
        self, executor, default_account, processing_date, purchases, session_factory,
    ):
        original = PostingEngine._apply_to_account

        def failing_on_third(self, account, amount):
            if amount == Decimal("3.00"):
                raise _database_locked()
            return original(self, account, amount)

        run = executor.start_run("r1", processing_date)
        items = InMemoryInputSource(purchases("1.00", "2.00", "3.00", "4.00"))
        with patch.object(PostingEngine, "_apply_to_account", autospec=True, side_effect=failing_on_third):
            executor.execute_run(run.run_id, items)

        final = executor.resume_run(run.run_id, items)

        assert final.status is BatchRunStatus.COMPLETED
        assert final.posted_count == 4
        assert [t.id for t in _transactions(session_factory, run.run_id)] == [1, 2, 3, 4]
        assert _balance(session_factory, default_account) == Decimal("10.00")

    def test_skip_limit_caps_run_retries(
        self, session_factory, deterministic_clock, default_account, processing_date, purchases,
    ):
        executor = BatchExecutor(
            session_factory,
            deterministic_clock,
            BatchConfig(chunk_size=2, item_retry_limit=5, skip_limit=1, read_ahead=False),
        )
        run = executor.start_run("r1", processing_date)
        with patch.object(PostingEngine, "_apply_to_account", side_effect=_database_locked()):
            final = executor.execute_run(run.run_id, InMemoryInputSource(purchases("1.00")))

        assert final.status is BatchRunStatus.ERROR
        assert "after 2 attempt(s)" in final.error_summary


# =============================================================================
# Fatal reject recording failure
# =============================================================================


class TestRejectRecordingFailure:
    def test_failure_is_fatal_and_rolls_back_chunk(
        self, executor, default_account, processing_date, make_proposal, session_factory,
    ):
        items = InMemoryInputSource(
            [make_proposal("10.00"), make_proposal("1.00", card_number="4999999999999999")]
        )
        run = executor.start_run("r1", processing_date)
        with patch.object(
            RejectRecorder,
            "record_reject",
            side_effect=RejectRecordingError("100", "disk full"),
        ):
            with pytest.raises(RejectRecordingError):
                executor.execute_run(run.run_id, items)

        state = executor.get_run(run.run_id)
        assert state.status is BatchRunStatus.ERROR
        assert state.posted_count == 0
        assert state.next_offset == 0
        assert _balance(session_factory, default_account) == Decimal("0.00")
        assert _transactions(session_factory, run.run_id) == []
