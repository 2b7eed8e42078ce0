"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for card accounts and their card cross
    references.
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.

Invariants enforced:
    - current_balance equals the sum of the amounts of every transaction
      posted to the account (opening balance zero).  Only PostingEngine
      mutates current_balance, the cycle accumulators and version.
    - At most one cross reference per card number (primary key).

Failure modes:
    - AccountNotFoundError / CardNotFoundError from AccountLookupService when
      a lookup misses.

Audit relevance:
    ``version`` increments on every posting, so a reader can tell whether a
    balance it saw is still current.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column, synonym

from ledger_kernel.db.base import Base, TrackedBase
from ledger_kernel.db.types import AccountId, Amount, CardNumber
from ledger_kernel.domain.dtos import AccountStatus


class Account(TrackedBase):
    """
    Card account master record.

    Cycle accumulators follow the legacy rule: a posted amount >= 0 adds to
    ``current_cycle_credit``, a negative amount adds to ``current_cycle_debit``.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        Index("idx_account_status", "active_status"),
        Index("idx_account_group", "group_id"),
    )

    id: Mapped[AccountId] = mapped_column(primary_key=True)

    active_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AccountStatus.ACTIVE.value,
    )

    current_balance: Mapped[Amount] = mapped_column(nullable=False, default=Decimal("0.00"))
    credit_limit: Mapped[Amount] = mapped_column(nullable=False, default=Decimal("0.00"))
    cash_credit_limit: Mapped[Amount] = mapped_column(nullable=False, default=Decimal("0.00"))

    open_date: Mapped[date | None] = mapped_column(nullable=True)
    expiration_date: Mapped[date | None] = mapped_column(nullable=True)
    reissue_date: Mapped[date | None] = mapped_column(nullable=True)

    current_cycle_credit: Mapped[Amount] = mapped_column(nullable=False, default=Decimal("0.00"))
    current_cycle_debit: Mapped[Amount] = mapped_column(nullable=False, default=Decimal("0.00"))

    group_id: Mapped[str | None] = mapped_column(String(10), nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=0)

    @property
    def status(self) -> AccountStatus:
        return AccountStatus(self.active_status)

    @property
    def is_active(self) -> bool:
        return self.active_status == AccountStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Account {self.id} balance={self.current_balance} status={self.active_status}>"


class CardXref(Base):
    """Card number to account / customer cross reference.  Read-only to the engine."""

    __tablename__ = "card_xrefs"

    __table_args__ = (
        Index("idx_card_xref_account", "account_id"),
    )

    id: Mapped[CardNumber] = mapped_column("card_number", primary_key=True)

    account_id: Mapped[AccountId] = mapped_column(nullable=False)

    customer_id: Mapped[str | None] = mapped_column(String(9), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    card_number = synonym("id")

    def __repr__(self) -> str:
        return f"<CardXref {self.id} -> {self.account_id}>"
