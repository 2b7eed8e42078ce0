"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account, CardXref
from ledger_kernel.models.reject import RejectRecord
from ledger_kernel.models.sequence import SequenceCounter
from ledger_kernel.models.transaction import CategoryBalance, Transaction

__all__ = [
    "Account",
    "CardXref",
    "Transaction",
    "CategoryBalance",
    "RejectRecord",
    "SequenceCounter",
]
