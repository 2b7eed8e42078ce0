"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through validation and
    posting: ProposedTransaction (input), AccountSnapshot and
    AccountResolution (lookup results), RejectReason and ValidationDecision
    (validator output).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service layer (never from domain logic).

Invariants enforced:
    - Amounts are Decimal at scale 2 or absent, never float.
    - The untouched input fields travel with the proposal so a reject can
      persist exactly what was received.

Data flow:
    input record -> ProposedTransaction -> ValidationDecision -> Transaction | RejectRecord
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from ledger_kernel.domain.values import format_amount, normalize_amount
from ledger_kernel.exceptions import PrecisionError

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel

# Legacy input timestamp layout, e.g. 2024-01-15-10.30.00.000000
LEGACY_TIMESTAMP_FORMAT = "%Y-%m-%d-%H.%M.%S.%f"
_TIMESTAMP_FORMATS = (
    LEGACY_TIMESTAMP_FORMAT,
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a legacy or ISO timestamp; blank input yields None.

    Raises:
        ValueError: If the string matches no known layout.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"Unrecognized timestamp: {value!r}")


class AccountStatus(str, Enum):
    """Lifecycle status of a card account."""

    ACTIVE = "active"
    DORMANT = "dormant"
    SUSPENDED = "suspended"


class Severity(str, Enum):
    """Reject severity carried in the reject trailer."""

    ERROR = "ERROR"
    WARNING = "WARNING"


class RejectReason(str, Enum):
    """
    Closed set of rejection reasons.

    The numeric codes and texts are the legacy reject-file values and must not
    change; ACCOUNT_INACTIVE is a business-rule rejection with no legacy code.
    """

    INVALID_CARD = "100"
    ACCOUNT_NOT_FOUND = "101"
    OVER_LIMIT = "102"
    ACCOUNT_EXPIRED = "103"
    INVALID_DATA = "104"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"

    @property
    def text(self) -> str:
        return _REASON_TEXT[self]

    @property
    def severity(self) -> Severity:
        return _REASON_SEVERITY[self]

    @property
    def file_code(self) -> str:
        """Four-digit code for the legacy reject file."""
        if self.value.isdigit():
            return self.value.zfill(4)
        return "0106"


_REASON_TEXT: dict[RejectReason, str] = {
    RejectReason.INVALID_CARD: "INVALID CARD NUMBER FOUND",
    RejectReason.ACCOUNT_NOT_FOUND: "ACCOUNT RECORD NOT FOUND",
    RejectReason.OVER_LIMIT: "OVERLIMIT TRANSACTION",
    RejectReason.ACCOUNT_EXPIRED: "TRANSACTION RECEIVED AFTER ACCT EXPIRATION",
    RejectReason.INVALID_DATA: "INVALID TRANSACTION DATA",
    RejectReason.ACCOUNT_INACTIVE: "ACCOUNT NOT ACTIVE",
}

_REASON_SEVERITY: dict[RejectReason, Severity] = {
    RejectReason.INVALID_CARD: Severity.ERROR,
    RejectReason.ACCOUNT_NOT_FOUND: Severity.ERROR,
    RejectReason.INVALID_DATA: Severity.ERROR,
    RejectReason.OVER_LIMIT: Severity.WARNING,
    RejectReason.ACCOUNT_EXPIRED: Severity.WARNING,
    RejectReason.ACCOUNT_INACTIVE: Severity.WARNING,
}


# Field names of the legacy daily transaction record, in file order
INPUT_FIELDS: tuple[str, ...] = (
    "transactionId",
    "typeCode",
    "categoryCode",
    "source",
    "description",
    "amount",
    "merchantId",
    "merchantName",
    "merchantCity",
    "merchantZip",
    "cardNumber",
    "originalTimestamp",
    "processingTimestamp",
)

# Column widths of the legacy daily-transaction record layout
FIELD_WIDTHS: dict[str, int] = {
    "transactionId": 16,
    "typeCode": 2,
    "categoryCode": 4,
    "source": 10,
    "description": 100,
    "merchantId": 9,
    "merchantName": 50,
    "merchantCity": 50,
    "merchantZip": 10,
    "cardNumber": 16,
}


@dataclass(frozen=True)
class ProposedTransaction:
    """
    A candidate transaction before validation.

    Contract:
        ``amount`` is a normalized Decimal, or None when the input carried no
        amount or one that cannot be represented.  ``input_error`` records why
        the input is malformed; the validator rejects such proposals with
        reason 104.

    Guarantees:
        - ``raw_fields`` is a read-only copy of the input as received.
    """

    card_number: str | None
    amount: Decimal | None
    type_code: str = ""
    category_code: str = ""
    source: str = ""
    description: str = ""
    merchant_id: str = ""
    merchant_name: str = ""
    merchant_city: str = ""
    merchant_zip: str = ""
    source_reference: str | None = None
    original_timestamp: datetime | None = None
    processing_timestamp: datetime | None = None
    input_error: str | None = None
    raw_fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw_fields", MappingProxyType(dict(self.raw_fields)))

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any]) -> ProposedTransaction:
        """
        Build a proposal from a legacy daily-transaction record.

        Never raises for bad data: an unparseable amount or timestamp is kept
        in ``raw_fields`` and reported through ``input_error``.
        """
        errors: list[str] = []

        def text(name: str) -> str:
            value = fields.get(name)
            return "" if value is None else str(value).strip()

        amount: Decimal | None = None
        raw_amount = fields.get("amount")
        if raw_amount is None or (isinstance(raw_amount, str) and not raw_amount.strip()):
            errors.append("amount is missing")
        else:
            try:
                amount = normalize_amount(raw_amount)
            except PrecisionError as exc:
                errors.append(f"amount: {exc.reason}")

        timestamps: dict[str, datetime | None] = {}
        for name in ("originalTimestamp", "processingTimestamp"):
            try:
                timestamps[name] = parse_timestamp(text(name) or None)
            except ValueError:
                timestamps[name] = None
                errors.append(f"{name} is not a timestamp")

        card = text("cardNumber")
        if not card:
            errors.append("card number is missing")

        for name, width in FIELD_WIDTHS.items():
            if len(text(name)) > width:
                errors.append(f"{name} exceeds {width} characters")

        return cls(
            card_number=card or None,
            amount=amount,
            type_code=text("typeCode"),
            category_code=text("categoryCode"),
            source=text("source"),
            description=text("description"),
            merchant_id=text("merchantId"),
            merchant_name=text("merchantName"),
            merchant_city=text("merchantCity"),
            merchant_zip=text("merchantZip"),
            source_reference=text("transactionId") or None,
            original_timestamp=timestamps["originalTimestamp"],
            processing_timestamp=timestamps["processingTimestamp"],
            input_error="; ".join(errors) or None,
            raw_fields={k: v for k, v in fields.items()},
        )

    def to_payload(self) -> dict[str, str | None]:
        """
        Copy of the input for persistence, amounts as strings.

        When the proposal came from a record, the received values are
        returned untouched; otherwise the normalized fields are rendered.
        """
        if self.raw_fields:
            return {
                k: (None if v is None else str(v)) for k, v in self.raw_fields.items()
            }
        return {
            "transactionId": self.source_reference,
            "typeCode": self.type_code,
            "categoryCode": self.category_code,
            "source": self.source,
            "description": self.description,
            "amount": format_amount(self.amount) if self.amount is not None else None,
            "merchantId": self.merchant_id,
            "merchantName": self.merchant_name,
            "merchantCity": self.merchant_city,
            "merchantZip": self.merchant_zip,
            "cardNumber": self.card_number,
            "originalTimestamp": (
                self.original_timestamp.isoformat() if self.original_timestamp else None
            ),
            "processingTimestamp": (
                self.processing_timestamp.isoformat() if self.processing_timestamp else None
            ),
        }


@dataclass(frozen=True)
class AccountSnapshot:
    """Read-only view of the account fields the validator needs."""

    account_id: str
    current_balance: Decimal
    credit_limit: Decimal
    active_status: AccountStatus
    expiration_date: date | None

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountSnapshot:
        return cls(
            account_id=model.id,
            current_balance=model.current_balance,
            credit_limit=model.credit_limit,
            active_status=AccountStatus(model.active_status),
            expiration_date=model.expiration_date,
        )


@dataclass(frozen=True)
class AccountResolution:
    """
    Outcome of resolving a card number to its account.

    ``card_found`` False means no active cross reference exists; a found card
    with ``account`` None means the cross reference points to a missing
    account row.
    """

    card_found: bool
    account_id: str | None = None
    account: AccountSnapshot | None = None

    @classmethod
    def card_not_found(cls) -> AccountResolution:
        return cls(card_found=False)


@dataclass(frozen=True)
class ValidationDecision:
    """Validator output: accepted, or rejected with exactly one reason."""

    accepted: bool
    reason: RejectReason | None = None
    reason_text: str | None = None

    @classmethod
    def accept(cls) -> ValidationDecision:
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: RejectReason) -> ValidationDecision:
        return cls(accepted=False, reason=reason, reason_text=reason.text)
