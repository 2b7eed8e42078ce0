"""
BillPaymentService -- interactive full-balance bill payment.

Responsibility:
    Validates an online "pay my balance" request, then posts the payment
    through the same validator and PostingEngine the batch uses, and commits
    synchronously.  A returned PaymentResult is the only evidence that the
    payment is durable.

Architecture position:
    Services -- stateful orchestration over kernel services.
    Depends on ledger_kernel (services, domain) and ledger_config.schema.

Invariants enforced:
    - Request checks run in legacy order: account id, confirmation flag,
      account existence, balance.
    - An empty flag and an explicit "N" are answered identically.
    - A zero or negative balance is refused before any transaction id is
      allocated.
    - The transaction counter and then the account row are locked before
      the payment amount is computed, so the amount posted is the balance
      that was read.  A payment issued while a batch chunk is open waits
      for that chunk to commit.

Failure modes:
    - ValidationError / InvalidConfirmationError / ConfirmationRequiredError
    - AccountNotFoundError, InsufficientFundsError
    - OverCreditLimitError, AccountExpiredError, AccountInactiveError,
      CardNotFoundError (validator rejections)
    - StorageTimeoutError / StorageError / PostingError from posting; never
      retried here.

Audit relevance:
    ``bill_payment_started`` / ``bill_payment_completed`` /
    ``bill_payment_failed`` carry the account id, correlation id and
    duration.  The posted transaction is the payment's ledger record.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from sqlalchemy.orm import Session

from ledger_config.schema import PaymentConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountResolution,
    AccountSnapshot,
    ProposedTransaction,
    RejectReason,
)
from ledger_kernel.domain.validator import TransactionValidator
from ledger_kernel.exceptions import (
    AccountExpiredError,
    AccountInactiveError,
    AccountNotFoundError,
    CardNotFoundError,
    ConfirmationRequiredError,
    InvalidConfirmationError,
    LedgerKernelError,
    OverCreditLimitError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.account_lookup import AccountLookupService
from ledger_kernel.services.posting_engine import PostingEngine

logger = get_logger("services.bill_payment")

_YES = frozenset({"y", "yes"})
_NO = frozenset({"n", "no"})


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a successful bill payment."""

    success: bool
    account_id: str
    transaction_id: int
    payment_amount: Decimal
    new_balance: Decimal
    message: str


def _rejection_error(
    reason: RejectReason,
    snapshot: AccountSnapshot | None,
    proposed: ProposedTransaction,
    account_id: str,
) -> LedgerKernelError:
    return _REJECTION_ERRORS[reason](snapshot, proposed, account_id)


_REJECTION_ERRORS: dict[
    RejectReason,
    Callable[[AccountSnapshot | None, ProposedTransaction, str], LedgerKernelError],
] = {
    RejectReason.INVALID_CARD: lambda s, p, a: CardNotFoundError(p.card_number or ""),
    RejectReason.ACCOUNT_NOT_FOUND: lambda s, p, a: AccountNotFoundError(a),
    RejectReason.OVER_LIMIT: lambda s, p, a: OverCreditLimitError(a, RejectReason.OVER_LIMIT.text),
    RejectReason.ACCOUNT_EXPIRED: lambda s, p, a: AccountExpiredError(
        a, RejectReason.ACCOUNT_EXPIRED.text
    ),
    RejectReason.ACCOUNT_INACTIVE: lambda s, p, a: AccountInactiveError(
        a, s.active_status.value if s is not None else "unknown"
    ),
    RejectReason.INVALID_DATA: lambda s, p, a: ValidationError(
        "card_number", f"No active card for account {a}"
    ),
}


def parse_confirmation(value: str | None) -> bool:
    """True for Y/YES, False for empty, N or NO (any case).

    Raises:
        InvalidConfirmationError: For any other non-empty value.
    """
    flag = (value or "").strip().lower()
    if not flag or flag in _NO:
        return False
    if flag in _YES:
        return True
    raise InvalidConfirmationError(value or "")


class BillPaymentService:
    """Full-balance bill payment facade.

    Contract:
        - ``preview()`` is read-only.
        - ``pay()`` commits on success and rolls back on failure when
          ``auto_commit`` is True.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        payment_config: PaymentConfig | None = None,
        auto_commit: bool = True,
        validator: TransactionValidator | None = None,
        posting_engine: PostingEngine | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = payment_config or PaymentConfig()
        self._auto_commit = auto_commit
        self._validator = validator or TransactionValidator()
        self._lookup = AccountLookupService(session, self._clock)
        self._engine = posting_engine or PostingEngine(session, self._clock)

    def preview(self, account_id: str) -> Decimal:
        """Current balance of the account, for display before confirming."""
        account_id = self._require_account_id(account_id)
        return self._lookup.find_account(account_id).current_balance

    def pay(
        self,
        account_id: str,
        confirmation: str | None,
        actor_id: str | None = None,
    ) -> PaymentResult:
        """
        Pay the full current balance of ``account_id``.

        Preconditions:
            - ``confirmation`` is Y/YES (any case).

        Postconditions:
            - One payment transaction is posted and committed; the account
              balance is 0.00.

        Raises:
            See module docstring.
        """
        account_id = self._require_account_id(account_id)
        if not parse_confirmation(confirmation):
            raise ConfirmationRequiredError(account_id)

        with LogContext.bind(
            correlation_id=str(uuid4()),
            account_id=account_id,
            actor_id=actor_id,
        ):
            logger.info("bill_payment_started")
            t0 = time.monotonic()
            try:
                result = self._do_pay(account_id)

                if self._auto_commit:
                    self._session.commit()

                logger.info(
                    "bill_payment_completed",
                    extra={
                        "transaction_id": result.transaction_id,
                        "payment_amount": str(result.payment_amount),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return result

            except Exception as exc:
                if self._auto_commit:
                    self._session.rollback()
                logger.error(
                    "bill_payment_failed",
                    extra={
                        "error_type": type(exc).__name__,
                        "error_code": getattr(exc, "code", None),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise

    def _do_pay(self, account_id: str) -> PaymentResult:
        """Payment logic without transaction management."""
        # Counter before account row, as in the batch path
        self._engine.sequence.lock_transaction_counter()
        account = self._lookup.find_account(account_id, for_update=True)
        payment_amount = PostingEngine.compute_full_balance_payment(account)

        card = self._lookup.find_card_for_account(account_id)
        snapshot = AccountSnapshot.from_model(account)
        now = self._clock.now()
        proposed = ProposedTransaction(
            card_number=card.card_number if card is not None else None,
            amount=-payment_amount,
            type_code=self._config.type_code,
            category_code=self._config.category_code,
            source=self._config.source,
            description=self._config.description,
            merchant_id=self._config.merchant_id,
            merchant_name=self._config.merchant_name,
            merchant_city=self._config.merchant_city,
            merchant_zip=self._config.merchant_zip,
            original_timestamp=now,
            processing_timestamp=now,
        )
        resolution = AccountResolution(
            card_found=card is not None,
            account_id=account_id,
            account=snapshot,
        )

        decision = self._validator.validate(proposed, resolution, now.date())
        if not decision.accepted:
            raise _rejection_error(decision.reason, snapshot, proposed, account_id)

        txn = self._engine.post(proposed, account_id)
        return PaymentResult(
            success=True,
            account_id=account_id,
            transaction_id=txn.id,
            payment_amount=payment_amount,
            new_balance=account.current_balance,
            message=f"Payment successful. Your Transaction ID is {txn.id}.",
        )

    @staticmethod
    def _require_account_id(account_id: str | None) -> str:
        value = (account_id or "").strip()
        if not value:
            raise ValidationError("account_id", "Acct ID can NOT be empty...")
        return value
