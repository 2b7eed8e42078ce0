"""
Typed exception hierarchy for the ledger kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the posting engine (the bill-payment facade, the batch executor,
presentation layers outside this repository) must tell apart failures that
need very different handling:

  - ValidationError        -> caller fixes the input; never retried
  - BusinessRuleError      -> surfaced with a stable code; never retried
  - ResourceNotFoundError  -> "create account" vs "try again" flows
  - PostingError           -> storage / sequencing failure; the ONLY class
                              eligible for bounded automatic retry (batch only)
  - RejectRecordingError   -> always fatal to a batch run

Every class carries a ``code`` class attribute (machine-readable, API-safe)
and stores its context as attributes, so nothing downstream parses messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidConfirmationError
    |   +-- ConfirmationRequiredError
    |
    +-- PrecisionError
    |
    +-- BusinessRuleError
    |   +-- InsufficientFundsError
    |   +-- AccountInactiveError
    |   +-- OverCreditLimitError
    |   +-- AccountExpiredError
    |
    +-- ResourceNotFoundError
    |   +-- AccountNotFoundError
    |   +-- CardNotFoundError
    |
    +-- PostingError
    |   +-- StorageError
    |   |   +-- StorageTimeoutError
    |   +-- ImmutabilityViolationError
    |
    +-- RejectRecordingError
    |
    +-- BatchError
        +-- BatchRunNotFoundError
        +-- BatchIdempotencyError
        +-- BatchRunStateError
        |   +-- BatchRunSupersededError
        +-- BatchRetryExhaustedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Required input missing or malformed
                | INVALID_CONFIRMATION        | Confirmation flag not Y/N
                | CONFIRMATION_REQUIRED       | Confirmation empty or N
Precision       | PRECISION_ERROR             | Amount not representable at scale 2
Business rule   | INSUFFICIENT_FUNDS          | Nothing to pay (balance <= 0)
                | ACCOUNT_INACTIVE            | Account is dormant / suspended
                | OVER_CREDIT_LIMIT           | balance + amount > credit limit
                | ACCOUNT_EXPIRED             | Account expired before processing date
Not found       | ACCOUNT_NOT_FOUND           | Unknown account id
                | CARD_NOT_FOUND              | Unknown card number
Posting         | POSTING_ERROR               | Posting unit failed, nothing applied
                | STORAGE_ERROR               | Underlying storage failure
                | STORAGE_TIMEOUT             | Lock / statement / pool timeout
                | IMMUTABILITY_VIOLATION      | Update/delete of an append-only row
Reject          | REJECT_RECORDING_FAILED     | Reject could not be persisted
Batch           | BATCH_RUN_NOT_FOUND         | Unknown run id
                | BATCH_IDEMPOTENCY_VIOLATION | run_key already used
                | BATCH_RUN_STATE_INVALID     | Illegal state transition
                | BATCH_RUN_SUPERSEDED        | Another executor resumed the run
                | BATCH_RETRY_EXHAUSTED       | Storage retries exhausted

===============================================================================
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Validation exceptions


class ValidationError(LedgerKernelError):
    """Malformed or missing required input.  Recoverable by the caller."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class InvalidConfirmationError(ValidationError):
    """Confirmation flag is present but is not one of Y/N (case-insensitive)."""

    code: str = "INVALID_CONFIRMATION"

    def __init__(self, value: str):
        self.value = value
        super().__init__("confirmation", "Invalid value. Valid values are (Y/N)...")


class ConfirmationRequiredError(ValidationError):
    """
    The payment has not been confirmed.

    Raised identically for an empty flag and for an explicit "N"; downstream
    screens depend on the single message.
    """

    code: str = "CONFIRMATION_REQUIRED"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("confirmation", "Confirm to make a bill payment...")


# Precision exceptions


class PrecisionError(LedgerKernelError):
    """Value cannot be represented as a 2-decimal fixed-point amount."""

    code: str = "PRECISION_ERROR"

    def __init__(self, value: object, reason: str):
        self.value = repr(value)
        self.reason = reason
        super().__init__(f"Cannot normalize amount {value!r}: {reason}")


# Business rule exceptions


class BusinessRuleError(LedgerKernelError):
    """A well-formed request violates a business rule.  Never retried."""

    code: str = "BUSINESS_RULE_VIOLATION"


class InsufficientFundsError(BusinessRuleError):
    """A full-balance payment was requested on a zero or negative balance."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, account_id: str, current_balance: Decimal):
        self.account_id = account_id
        self.current_balance = str(current_balance)
        super().__init__("You have nothing to pay...")


class AccountInactiveError(BusinessRuleError):
    """Account status is not active."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str, status: str):
        self.account_id = account_id
        self.status = status
        super().__init__(f"Account {account_id} is not active (status: {status})")


class OverCreditLimitError(BusinessRuleError):
    """Posting would take the balance above the credit limit."""

    code: str = "OVER_CREDIT_LIMIT"

    def __init__(self, account_id: str, reason_text: str = "OVERLIMIT TRANSACTION"):
        self.account_id = account_id
        super().__init__(f"{reason_text} for account {account_id}")


class AccountExpiredError(BusinessRuleError):
    """Account expired before the processing date."""

    code: str = "ACCOUNT_EXPIRED"

    def __init__(
        self,
        account_id: str,
        reason_text: str = "TRANSACTION RECEIVED AFTER ACCT EXPIRATION",
    ):
        self.account_id = account_id
        super().__init__(f"{reason_text} for account {account_id}")


# Not-found exceptions


class ResourceNotFoundError(LedgerKernelError):
    """Referenced account or card does not exist."""

    code: str = "RESOURCE_NOT_FOUND"


class AccountNotFoundError(ResourceNotFoundError):
    """Account with the given id was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("Account ID NOT found...")


class CardNotFoundError(ResourceNotFoundError):
    """Card number has no active cross reference."""

    code: str = "CARD_NOT_FOUND"

    def __init__(self, card_number: str):
        self.card_number = card_number
        super().__init__(f"Card number not found: {card_number}")


# Posting exceptions


class PostingError(LedgerKernelError):
    """
    The posting unit failed and nothing was applied.

    A returned Transaction is the only evidence of a completed posting; this
    exception guarantees the absence of partial effects.
    """

    code: str = "POSTING_ERROR"

    def __init__(self, message: str, account_id: str | None = None):
        self.account_id = account_id
        super().__init__(message)


class StorageError(PostingError):
    """Unexpected failure in the storage or sequencing layer."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, cause: str, account_id: str | None = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Storage failure during {operation}: {cause}", account_id)


class StorageTimeoutError(StorageError):
    """A lock wait, statement, or pool checkout exceeded its bound."""

    code: str = "STORAGE_TIMEOUT"


class ImmutabilityViolationError(PostingError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Reject exceptions


class RejectRecordingError(LedgerKernelError):
    """A reject could not be persisted.  Always fatal to a batch run."""

    code: str = "REJECT_RECORDING_FAILED"

    def __init__(self, reason_code: str, cause: str):
        self.reason_code = reason_code
        self.cause = cause
        super().__init__(f"Failed to record reject ({reason_code}): {cause}")


# Batch exceptions


class BatchError(LedgerKernelError):
    """Base exception for batch run errors."""

    code: str = "BATCH_ERROR"


class BatchRunNotFoundError(BatchError):
    """Batch run with given id was not found."""

    code: str = "BATCH_RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Batch run not found: {run_id}")


class BatchIdempotencyError(BatchError):
    """A run with the same run_key already exists."""

    code: str = "BATCH_IDEMPOTENCY_VIOLATION"

    def __init__(self, run_key: str, existing_run_id: str):
        self.run_key = run_key
        self.existing_run_id = existing_run_id
        super().__init__(
            f"Batch run key '{run_key}' already used by run {existing_run_id}"
        )


class BatchRunStateError(BatchError):
    """Requested operation is not allowed in the run's current status."""

    code: str = "BATCH_RUN_STATE_INVALID"

    def __init__(self, run_id: str, status: str, operation: str):
        self.run_id = run_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} batch run {run_id} in status {status}")


class BatchRunSupersededError(BatchRunStateError):
    """The run was taken over by another start or resume.

    Raised under the run row lock when this executor's owner token or its
    progress marker no longer matches the stored row; the executor's
    uncommitted chunk is rolled back and the run row is left to its new owner.
    """

    code: str = "BATCH_RUN_SUPERSEDED"

    def __init__(self, run_id: str, status: str, operation: str, detail: str):
        self.detail = detail
        super().__init__(run_id, status, f"{operation} ({detail})")


class BatchRetryExhaustedError(BatchError):
    """Storage failures exceeded the configured retry bounds."""

    code: str = "BATCH_RETRY_EXHAUSTED"

    def __init__(self, run_id: str, input_sequence: int, attempts: int, cause: str):
        self.run_id = run_id
        self.input_sequence = input_sequence
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Batch run {run_id}: item {input_sequence} failed after "
            f"{attempts} attempt(s): {cause}"
        )
