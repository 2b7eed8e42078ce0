"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.ledger_selector import LedgerSelector, TransactionRecord

__all__ = [
    "LedgerSelector",
    "TransactionRecord",
]
