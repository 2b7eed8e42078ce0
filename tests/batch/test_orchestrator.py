"""
Tests for BatchOrchestrator: run the day, then write the clearing extract.
"""

from dataclasses import replace
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from ledger_batch.domain.types import BatchRunStatus
from ledger_batch.orchestrator import BatchOrchestrator
from ledger_batch.services.clearing import DirectoryClearingSink, InMemoryClearingSink
from ledger_batch.sources import InMemoryInputSource
from ledger_config import get_active_config
from ledger_config.schema import ClearingConfig
from ledger_kernel.services.posting_engine import PostingEngine


@pytest.fixture
def sink() -> InMemoryClearingSink:
    return InMemoryClearingSink()


@pytest.fixture
def orchestrator(session_factory, deterministic_clock, batch_config, sink) -> BatchOrchestrator:
    return BatchOrchestrator(
        session_factory,
        clock=deterministic_clock,
        batch_config=batch_config,
        sink=sink,
    )


class TestRunDailyPosting:
    def test_writes_clearing_for_posted_transactions(
        self, orchestrator, sink, default_account, processing_date, make_proposal,
    ):
        items = [make_proposal("10.00"), make_proposal("-2.50", type_code="02")]
        result = orchestrator.run_daily_posting("day-1", processing_date, InMemoryInputSource(items))

        assert result.run.status is BatchRunStatus.COMPLETED
        assert result.clearing_written
        assert result.clearing_location == "clearing_20240101.txt"
        lines = sink.files[processing_date].splitlines()
        assert lines == [
            "0000000000000001 00000000001          10.00 2024-01-01 01 0001 100000001 P",
            "0000000000000002 00000000001          -2.50 2024-01-01 02 0001 100000001 P",
        ]

    def test_rejected_items_not_in_extract(
        self, orchestrator, sink, default_account, processing_date, make_proposal,
    ):
        items = [make_proposal("10.00", card_number="4999999999999999"), make_proposal("1.00")]
        result = orchestrator.run_daily_posting("day-1", processing_date, InMemoryInputSource(items))

        assert result.run.status is BatchRunStatus.COMPLETED_WITH_REJECTIONS
        lines = sink.files[processing_date].splitlines()
        assert len(lines) == 1
        assert lines[0].startswith("0000000000000001 ")

    def test_empty_day_writes_sentinel(self, orchestrator, sink, processing_date):
        result = orchestrator.run_daily_posting("day-1", processing_date, InMemoryInputSource([]))

        assert result.clearing_written
        assert sink.files[processing_date] == "NO ACTIVITY 2024-01-01\n"

    def test_failed_run_writes_nothing(
        self, orchestrator, sink, default_account, processing_date, make_proposal, captured_logs,
    ):
        failure = OperationalError("UPDATE accounts", {}, Exception("database is locked"))
        with patch.object(PostingEngine, "_apply_to_account", side_effect=failure):
            result = orchestrator.run_daily_posting(
                "day-1", processing_date, InMemoryInputSource([make_proposal("1.00")])
            )

        assert result.run.status is BatchRunStatus.ERROR
        assert not result.clearing_written
        assert sink.files == {}
        assert any(r["message"] == "clearing_extract_skipped" for r in captured_logs())

    def test_resume_then_write(
        self, orchestrator, sink, default_account, processing_date, make_proposal,
    ):
        source = InMemoryInputSource([make_proposal("1.00"), make_proposal("2.00"), make_proposal("3.00")])
        original = PostingEngine._apply_to_account

        def failing_on_third(self, account, amount):
            if amount == Decimal("3.00"):
                raise OperationalError("UPDATE accounts", {}, Exception("database is locked"))
            return original(self, account, amount)

        with patch.object(PostingEngine, "_apply_to_account", autospec=True, side_effect=failing_on_third):
            failed = orchestrator.run_daily_posting("day-1", processing_date, source)
        assert failed.run.status is BatchRunStatus.ERROR

        result = orchestrator.resume_daily_posting(failed.run.run_id, source)

        assert result.run.status is BatchRunStatus.COMPLETED
        assert len(sink.files[processing_date].splitlines()) == 3

    def test_cancel_exposed_through_executor(self, orchestrator):
        orchestrator.executor.request_cancel()
        assert orchestrator.executor.cancel_requested


class TestFromConfig:
    def test_wires_config_sections(self, session_factory, deterministic_clock, tmp_path):
        config = get_active_config()
        config = replace(
            config,
            clearing=replace(config.clearing, output_dir=str(tmp_path / "out")),
        )
        orchestrator = BatchOrchestrator.from_config(config, session_factory, deterministic_clock)

        assert orchestrator.clearing_generator.config == config.clearing
        result = orchestrator.run_daily_posting(
            "day-1", deterministic_clock.today(), InMemoryInputSource([])
        )

        written = tmp_path / "out" / "clearing_20240101.txt"
        assert result.clearing_location == str(written)
        assert written.read_text() == "NO ACTIVITY 2024-01-01\n"

    def test_custom_markers(self, session_factory, deterministic_clock, default_account, make_proposal):
        sink = InMemoryClearingSink()
        orchestrator = BatchOrchestrator(
            session_factory,
            clock=deterministic_clock,
            clearing_config=ClearingConfig(sentinel_prefix="NOACT", status_marker="X"),
            sink=sink,
        )
        orchestrator.run_daily_posting(
            "day-1", deterministic_clock.today(), InMemoryInputSource([make_proposal("1.00")])
        )
        assert sink.files[deterministic_clock.today()].rstrip("\n").endswith(" X")

    def test_default_sink_is_directory(self, session_factory, tmp_path):
        orchestrator = BatchOrchestrator(
            session_factory, clearing_config=ClearingConfig(output_dir=str(tmp_path))
        )
        assert isinstance(orchestrator._sink, DirectoryClearingSink)
