"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: posted transactions by run or by
    account, stored category balances and rejects by run.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/ or outer layers.

Audit relevance:
    These queries are the replay side of the balance invariant.  Sums are
    computed in Python with Decimal so the result does not depend on how the
    backend aggregates NUMERIC values.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.models.account import Account
from ledger_kernel.models.reject import RejectRecord
from ledger_kernel.models.transaction import CategoryBalance, Transaction
from ledger_kernel.selectors.base import BaseSelector

CategoryKey = tuple[str, str, str]


@dataclass(frozen=True)
class TransactionRecord:
    """Read-only view of a posted transaction."""

    id: int
    account_id: str
    card_number: str
    type_code: str
    category_code: str
    amount: Decimal
    merchant_id: str
    processed_timestamp: datetime
    batch_run_id: UUID | None
    source_reference: str | None

    @classmethod
    def from_model(cls, model: Transaction) -> "TransactionRecord":
        return cls(
            id=model.id,
            account_id=model.account_id,
            card_number=model.card_number,
            type_code=model.type_code,
            category_code=model.category_code,
            amount=model.amount,
            merchant_id=model.merchant_id,
            processed_timestamp=model.processed_timestamp,
            batch_run_id=model.batch_run_id,
            source_reference=model.source_reference,
        )


class LedgerSelector(BaseSelector):
    """Read queries over transactions, balances and rejects."""

    def max_transaction_id(self) -> int:
        return self.session.execute(
            select(func.coalesce(func.max(Transaction.id), 0))
        ).scalar_one()

    def transaction_ids(self) -> list[int]:
        return list(
            self.session.execute(select(Transaction.id).order_by(Transaction.id)).scalars()
        )

    def transactions_for_run(self, batch_run_id: UUID) -> list[TransactionRecord]:
        rows = self.session.execute(
            select(Transaction)
            .where(Transaction.batch_run_id == batch_run_id)
            .order_by(Transaction.id)
        ).scalars()
        return [TransactionRecord.from_model(r) for r in rows]

    def transactions_for_account(self, account_id: str) -> list[TransactionRecord]:
        rows = self.session.execute(
            select(Transaction)
            .where(Transaction.account_id == account_id)
            .order_by(Transaction.id)
        ).scalars()
        return [TransactionRecord.from_model(r) for r in rows]

    def account_ids(self) -> list[str]:
        return list(self.session.execute(select(Account.id).order_by(Account.id)).scalars())

    def account_balance(self, account_id: str) -> Decimal | None:
        return self.session.execute(
            select(Account.current_balance).where(Account.id == account_id)
        ).scalar_one_or_none()

    def category_balances(self, account_id: str) -> dict[CategoryKey, Decimal]:
        rows = self.session.execute(
            select(CategoryBalance).where(CategoryBalance.account_id == account_id)
        ).scalars()
        return {r.key: r.balance for r in rows}

    def rejects_for_run(self, batch_run_id: UUID) -> list[RejectRecord]:
        return list(
            self.session.execute(
                select(RejectRecord)
                .where(RejectRecord.batch_run_id == batch_run_id)
                .order_by(RejectRecord.input_sequence, RejectRecord.rejected_at)
            ).scalars()
        )

    def reject_counts_by_reason(self, batch_run_id: UUID) -> dict[str, int]:
        rows = self.session.execute(
            select(RejectRecord.reason_code, func.count())
            .where(RejectRecord.batch_run_id == batch_run_id)
            .group_by(RejectRecord.reason_code)
        ).all()
        return {code: count for code, count in rows}
