"""
Tests for SequenceService: gapless, monotonic transaction ids.
"""

from ledger_kernel.services.sequence_service import SequenceService


class TestSequenceService:
    def test_starts_at_one_on_empty_ledger(self, session):
        assert SequenceService(session).next_transaction_id() == 1

    def test_monotonic(self, session):
        seq = SequenceService(session)
        assert [seq.next_transaction_id() for _ in range(3)] == [1, 2, 3]
        assert seq.current_value(SequenceService.TRANSACTION) == 3

    def test_rolled_back_allocation_is_reused(self, session):
        seq = SequenceService(session)
        assert seq.next_transaction_id() == 1

        savepoint = session.begin_nested()
        assert seq.next_transaction_id() == 2
        savepoint.rollback()

        assert seq.next_transaction_id() == 2

    def test_rolled_back_counter_creation(self, session):
        seq = SequenceService(session)
        savepoint = session.begin_nested()
        seq.next_transaction_id()
        savepoint.rollback()

        assert seq.current_value(SequenceService.TRANSACTION) is None
        assert seq.next_transaction_id() == 1

    def test_named_sequences_are_independent(self, session):
        seq = SequenceService(session)
        seq.next_value("a")
        seq.next_value("a")
        assert seq.next_value("b") == 1
        assert seq.next_value("a") == 3

    def test_seed_used_only_on_creation(self, session):
        seq = SequenceService(session)
        assert seq.next_value("seeded", seed=lambda: 100) == 101
        assert seq.next_value("seeded", seed=lambda: 500) == 102

    def test_committed_value_survives_new_session(self, session_factory):
        with session_factory() as s:
            SequenceService(s).next_transaction_id()
            s.commit()
        with session_factory() as s:
            assert SequenceService(s).next_transaction_id() == 2
            s.commit()

    def test_reset(self, session):
        seq = SequenceService(session)
        seq.next_value("r")
        seq.reset("r", 10)
        assert seq.next_value("r") == 11
