"""
PostingEngine -- the single writer of transactions and balances.

Responsibility:
    Applies an accepted proposal to the ledger as one atomic unit:

        (lock) transaction counter, then SELECT account ... FOR UPDATE
        (a)    allocate the transaction id (SequenceService)
        (b)    INSERT the transaction
        (c)    update current_balance, the cycle accumulator and version
        (d)    upsert the category balance for (account, type, category)

    All four steps run inside one SAVEPOINT.  On any failure the savepoint
    is rolled back, so the account, category balance, counter and
    transaction table are exactly as before the call.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by TransactionProcessor (batch) and BillPaymentService
    (interactive).  Never commits; the caller owns the outer transaction.

Invariants enforced:
    - Balance invariant: current_balance == sum(amount) over the account's
      transactions; category balance == sum(amount) for its key.
    - Lock order is sequence counter row, then account row, in every
      posting path (see SequenceService).
    - Balances are computed with ``Amount``; a result outside the legacy
      range raises PrecisionError and nothing is applied.
    - No operation scans transaction history.

Failure modes:
    - AccountNotFoundError if the account row is missing.
    - StorageTimeoutError on lock/statement/pool timeouts.
    - StorageError on any other storage failure.
    - PostingError for every other failure inside the unit.
    - InsufficientFundsError from compute_full_balance_payment().

Audit relevance:
    ``posting_completed`` is logged with transaction id, account id, amount
    and the resulting balance.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_kernel.db.errors import translate_storage_error
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import AccountSnapshot, ProposedTransaction
from ledger_kernel.domain.values import Amount, normalize_amount
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    InsufficientFundsError,
    LedgerKernelError,
    PostingError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import CategoryBalance, Transaction
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.posting_engine")


class PostingEngine(BaseService):
    """Atomic posting of one transaction against one account."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session, clock)
        self._sequence = sequence_service or SequenceService(session)

    @property
    def sequence(self) -> SequenceService:
        return self._sequence

    @staticmethod
    def compute_full_balance_payment(account: Account | AccountSnapshot) -> Decimal:
        """
        Payment amount for a "pay the full balance" request.

        Raises:
            InsufficientFundsError: If the balance is zero or negative.
        """
        if isinstance(account, AccountSnapshot):
            account_id, balance = account.account_id, account.current_balance
        else:
            account_id, balance = account.id, account.current_balance
        if balance <= Decimal("0"):
            raise InsufficientFundsError(account_id, balance)
        return normalize_amount(balance)

    def post(
        self,
        proposed: ProposedTransaction,
        account_id: str,
        batch_run_id: UUID | None = None,
    ) -> Transaction:
        """
        Post ``proposed`` to ``account_id``.

        Preconditions:
            - The proposal has been accepted by TransactionValidator.
            - ``proposed.amount`` is the signed ledger amount.

        Postconditions:
            - Returns the flushed Transaction; every side effect is in the
              caller's transaction and becomes durable when it commits.

        Raises:
            PostingError: The unit failed and nothing was applied.
        """
        if proposed.amount is None or not proposed.card_number:
            raise PostingError("Proposal has no amount or card number", account_id)
        amount = normalize_amount(proposed.amount)

        try:
            with self.session.begin_nested():
                self._sequence.lock_transaction_counter()
                account = self._lock_account(account_id)
                txn_id = self._sequence.next_transaction_id()
                now = self.clock.now()
                txn = Transaction(
                    id=txn_id,
                    account_id=account_id,
                    card_number=proposed.card_number,
                    type_code=proposed.type_code,
                    category_code=proposed.category_code,
                    source=proposed.source,
                    description=proposed.description,
                    amount=amount,
                    merchant_id=proposed.merchant_id,
                    merchant_name=proposed.merchant_name,
                    merchant_city=proposed.merchant_city,
                    merchant_zip=proposed.merchant_zip,
                    original_timestamp=proposed.original_timestamp or now,
                    processed_timestamp=now,
                    batch_run_id=batch_run_id,
                    source_reference=proposed.source_reference,
                )
                self.session.add(txn)
                self.session.flush()
                self._apply_to_account(account, amount)
                self._apply_to_category(
                    account_id, proposed.type_code, proposed.category_code, amount
                )
                self.session.flush()
        except LedgerKernelError:
            raise
        except SQLAlchemyError as exc:
            raise translate_storage_error(exc, "post", account_id) from exc
        except Exception as exc:
            raise PostingError(
                f"Posting failed for account {account_id}: {exc}", account_id
            ) from exc

        logger.info(
            "posting_completed",
            extra={
                "transaction_id": txn.id,
                "account_id": account_id,
                "amount": str(amount),
                "new_balance": str(account.current_balance),
            },
        )
        return txn

    def _lock_account(self, account_id: str) -> Account:
        account = self.session.execute(
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def _apply_to_account(self, account: Account, amount: Decimal) -> None:
        delta = Amount.of(amount)
        account.current_balance = (Amount.of(account.current_balance) + delta).value
        if delta.is_negative:
            account.current_cycle_debit = (Amount.of(account.current_cycle_debit) + delta).value
        else:
            account.current_cycle_credit = (Amount.of(account.current_cycle_credit) + delta).value
        account.version += 1

    def _apply_to_category(
        self,
        account_id: str,
        type_code: str,
        category_code: str,
        amount: Decimal,
    ) -> CategoryBalance:
        balance = self.session.execute(
            select(CategoryBalance)
            .where(
                CategoryBalance.account_id == account_id,
                CategoryBalance.type_code == type_code,
                CategoryBalance.category_code == category_code,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if balance is None:
            balance = CategoryBalance(
                account_id=account_id,
                type_code=type_code,
                category_code=category_code,
                balance=amount,
            )
            self.session.add(balance)
        else:
            balance.balance = (Amount.of(balance.balance) + Amount.of(amount)).value
        return balance
