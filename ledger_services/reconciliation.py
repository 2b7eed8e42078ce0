"""
ReconciliationService -- replay check of stored balances.

Responsibility:
    Recomputes each account's balance and category balances from its posted
    transactions and compares them with the stored aggregates.

Architecture position:
    Services.  Read-only; uses LedgerSelector queries only.

Invariants checked:
    - accounts.current_balance == sum(transactions.amount) per account.
    - category_balances.balance == sum(amount) per (account, type, category).

Audit relevance:
    A mismatch is logged as ``reconciliation_mismatch`` with the account id
    and the differing values.  This is the only place that scans
    transaction history.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.orm import Session

from ledger_kernel.domain.values import normalize_amount
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.selectors.ledger_selector import CategoryKey, LedgerSelector

logger = get_logger("services.reconciliation")

_ZERO = Decimal("0.00")


@dataclass(frozen=True)
class AccountReconciliation:
    """Stored versus replayed balances for one account."""

    account_id: str
    stored_balance: Decimal
    replayed_balance: Decimal
    transaction_count: int
    # key -> (stored, replayed)
    category_mismatches: dict[CategoryKey, tuple[Decimal, Decimal]] = field(
        default_factory=dict
    )

    @property
    def balance_matches(self) -> bool:
        return self.stored_balance == self.replayed_balance

    @property
    def is_consistent(self) -> bool:
        return self.balance_matches and not self.category_mismatches


class ReconciliationService:
    """Balance invariant checks by replay."""

    def __init__(self, session: Session):
        self._selector = LedgerSelector(session)

    def reconcile_account(self, account_id: str) -> AccountReconciliation:
        stored = self._selector.account_balance(account_id)
        if stored is None:
            raise AccountNotFoundError(account_id)

        transactions = self._selector.transactions_for_account(account_id)
        replayed = _ZERO
        by_category: dict[CategoryKey, Decimal] = defaultdict(lambda: _ZERO)
        for txn in transactions:
            replayed += txn.amount
            by_category[(txn.account_id, txn.type_code, txn.category_code)] += txn.amount

        stored_categories = self._selector.category_balances(account_id)
        mismatches: dict[CategoryKey, tuple[Decimal, Decimal]] = {}
        for key in sorted(set(stored_categories) | set(by_category)):
            stored_value = stored_categories.get(key, _ZERO)
            replayed_value = by_category.get(key, _ZERO)
            if stored_value != replayed_value:
                mismatches[key] = (stored_value, normalize_amount(replayed_value))

        result = AccountReconciliation(
            account_id=account_id,
            stored_balance=stored,
            replayed_balance=normalize_amount(replayed),
            transaction_count=len(transactions),
            category_mismatches=mismatches,
        )
        if not result.is_consistent:
            logger.warning(
                "reconciliation_mismatch",
                extra={
                    "account_id": account_id,
                    "stored_balance": str(result.stored_balance),
                    "replayed_balance": str(result.replayed_balance),
                    "category_mismatches": len(mismatches),
                },
            )
        return result

    def reconcile_all(self) -> list[AccountReconciliation]:
        results = [self.reconcile_account(a) for a in self._selector.account_ids()]
        logger.info(
            "reconciliation_completed",
            extra={
                "accounts": len(results),
                "inconsistent": sum(1 for r in results if not r.is_consistent),
            },
        )
        return results
