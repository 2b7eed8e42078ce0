"""
TransactionProcessor -- validate one proposal, then post it or reject it.

Responsibility:
    The per-item unit shared by the batch executor: resolve the card (taking
    the account row lock), run the validator, and hand the proposal to
    either PostingEngine or RejectRecorder.  Exactly one of the two happens.

Failure modes:
    - PostingError / StorageError from the posting path (retryable in batch).
    - RejectRecordingError from the reject path (fatal in batch).
    - A PrecisionError from posting (a total leaving the legacy range) is
      not raised: the posting savepoint has rolled back and the item is
      rejected as invalid data (104).
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_kernel.db.errors import translate_storage_error
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import ProposedTransaction, RejectReason, ValidationDecision
from ledger_kernel.domain.validator import TransactionValidator
from ledger_kernel.exceptions import PrecisionError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.reject import RejectRecord
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.services.account_lookup import AccountLookupService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.services.reject_recorder import RejectRecorder

logger = get_logger("services.transaction_processor")


@dataclass(frozen=True)
class ProcessingOutcome:
    """Result of processing one proposal."""

    decision: ValidationDecision
    transaction: Transaction | None = None
    reject: RejectRecord | None = None

    @property
    def posted(self) -> bool:
        return self.transaction is not None


class TransactionProcessor(BaseService):
    """Validate-then-post-or-reject for a single proposal."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        validator: TransactionValidator | None = None,
        lookup: AccountLookupService | None = None,
        posting_engine: PostingEngine | None = None,
        reject_recorder: RejectRecorder | None = None,
    ):
        super().__init__(session, clock)
        self._validator = validator or TransactionValidator()
        self._lookup = lookup or AccountLookupService(session, self.clock)
        self._engine = posting_engine or PostingEngine(session, self.clock)
        self._recorder = reject_recorder or RejectRecorder(session, self.clock)

    def process(
        self,
        proposed: ProposedTransaction,
        processing_date: date,
        batch_run_id: UUID | None = None,
        input_sequence: int | None = None,
    ) -> ProcessingOutcome:
        try:
            # Counter before account row: the lock order every posting path uses
            self._engine.sequence.lock_transaction_counter()
            resolution = self._lookup.resolve_card(proposed.card_number, for_update=True)
        except SQLAlchemyError as exc:
            raise translate_storage_error(exc, "resolve_card") from exc

        decision = self._validator.validate(proposed, resolution, processing_date)

        if decision.accepted:
            try:
                txn = self._engine.post(
                    proposed, resolution.account_id, batch_run_id=batch_run_id
                )
                return ProcessingOutcome(decision=decision, transaction=txn)
            except PrecisionError as exc:
                # A cycle or category total would leave the legacy range
                logger.warning(
                    "posting_out_of_range",
                    extra={"account_id": resolution.account_id, "error": str(exc)},
                )
                decision = ValidationDecision.reject(RejectReason.INVALID_DATA)

        reject = self._recorder.record_reject(
            proposed,
            decision.reason,
            decision.reason_text,
            batch_run_id=batch_run_id,
            input_sequence=input_sequence,
        )
        return ProcessingOutcome(decision=decision, reject=reject)
