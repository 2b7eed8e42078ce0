"""
TransactionValidator -- pure accept/reject decision for a proposed transaction.

Responsibility:
    Decides, without any I/O, whether a proposal may be posted against the
    account its card resolves to.  Checks run in a fixed order and stop at
    the first failure:

        1. required fields / representable amount     -> 104
        2. card not found                               -> 100
           card found, account row missing              -> 101
        3. current_balance + amount > credit_limit      -> 102
           current_balance + amount below -9999999999.99 -> 104
        4. expiration_date < processing_date            -> 103
        5. status not active                            -> ACCOUNT_INACTIVE

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Called by TransactionProcessor (batch) and BillPaymentService
    (interactive); the account lookup happens before, in the service layer.

Audit relevance:
    The order is observable: an expired account that is also over limit is
    rejected as 102, exactly as the legacy posting program did.
"""

from datetime import date

from ledger_kernel.domain.dtos import (
    AccountResolution,
    AccountStatus,
    ProposedTransaction,
    RejectReason,
    ValidationDecision,
)
from ledger_kernel.domain.values import Amount
from ledger_kernel.exceptions import PrecisionError


class TransactionValidator:
    """Stateless validator; safe to share between threads."""

    def validate(
        self,
        proposed: ProposedTransaction,
        resolution: AccountResolution,
        processing_date: date,
    ) -> ValidationDecision:
        if (
            proposed.input_error is not None
            or not proposed.card_number
            or proposed.amount is None
        ):
            return ValidationDecision.reject(RejectReason.INVALID_DATA)

        if not resolution.card_found:
            return ValidationDecision.reject(RejectReason.INVALID_CARD)

        account = resolution.account
        if account is None:
            return ValidationDecision.reject(RejectReason.ACCOUNT_NOT_FOUND)

        try:
            new_balance = Amount.of(account.current_balance) + Amount.of(proposed.amount)
        except PrecisionError:
            # Outside S9(10)V99: above any credit limit when the item is a
            # charge, otherwise a balance the account record cannot hold
            if proposed.amount > 0:
                return ValidationDecision.reject(RejectReason.OVER_LIMIT)
            return ValidationDecision.reject(RejectReason.INVALID_DATA)
        if new_balance > Amount.of(account.credit_limit):
            return ValidationDecision.reject(RejectReason.OVER_LIMIT)

        if account.expiration_date is not None and account.expiration_date < processing_date:
            return ValidationDecision.reject(RejectReason.ACCOUNT_EXPIRED)

        if account.active_status != AccountStatus.ACTIVE:
            return ValidationDecision.reject(RejectReason.ACCOUNT_INACTIVE)

        return ValidationDecision.accept()
