"""Kernel services: sequencing, lookup, posting, reject capture."""

from ledger_kernel.services.account_lookup import AccountLookupService
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.services.reject_recorder import RejectRecorder
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.transaction_processor import (
    ProcessingOutcome,
    TransactionProcessor,
)

__all__ = [
    "AccountLookupService",
    "PostingEngine",
    "RejectRecorder",
    "SequenceService",
    "TransactionProcessor",
    "ProcessingOutcome",
]
