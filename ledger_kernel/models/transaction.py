"""
Module: ledger_kernel.models.transaction
Responsibility: ORM persistence for posted transactions and per-category
    balance aggregates.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Transaction ids come from SequenceService, never from autoincrement.
      They are unique, strictly increasing in commit order, and gapless.
    - Transactions are append-only: db/immutability.py rejects UPDATE and
      DELETE at flush time.
    - category_balances.balance equals the sum of posted amounts for its
      (account_id, type_code, category_code) key.

Audit relevance:
    ``batch_run_id`` links a batch posting to its run; ``source_reference``
    is the id the input record carried, kept for tracing back to the file.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString
from ledger_kernel.db.types import AccountId, Amount, CardNumber, CategoryCode, Sequence, TypeCode


class Transaction(Base):
    """
    A posted, immutable transaction.

    ``amount`` is signed: purchases are positive, payments and credits are
    negative, so that the account balance is the plain sum of amounts.
    """

    __tablename__ = "transactions"

    __table_args__ = (
        Index("idx_transaction_account", "account_id", "id"),
        Index("idx_transaction_batch_run", "batch_run_id"),
    )

    id: Mapped[Sequence] = mapped_column(primary_key=True, autoincrement=False)

    account_id: Mapped[AccountId] = mapped_column(nullable=False)
    card_number: Mapped[CardNumber] = mapped_column(nullable=False)

    type_code: Mapped[TypeCode] = mapped_column(nullable=False)
    category_code: Mapped[CategoryCode] = mapped_column(nullable=False)
    source: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    description: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    amount: Mapped[Amount] = mapped_column(nullable=False)

    merchant_id: Mapped[str] = mapped_column(String(9), nullable=False, default="")
    merchant_name: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    merchant_city: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    merchant_zip: Mapped[str] = mapped_column(String(10), nullable=False, default="")

    original_timestamp: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_timestamp: Mapped[datetime] = mapped_column(nullable=False)

    batch_run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    source_reference: Mapped[str | None] = mapped_column(String(16), nullable=True)

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.account_id} {self.amount}>"


class CategoryBalance(Base):
    """Running balance per (account, type code, category code)."""

    __tablename__ = "category_balances"

    __table_args__ = (
        UniqueConstraint(
            "account_id", "type_code", "category_code",
            name="uq_category_balance_key",
        ),
    )

    account_id: Mapped[AccountId] = mapped_column(nullable=False)
    type_code: Mapped[TypeCode] = mapped_column(nullable=False)
    category_code: Mapped[CategoryCode] = mapped_column(nullable=False)

    balance: Mapped[Amount] = mapped_column(nullable=False, default=Decimal("0.00"))

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.account_id, self.type_code, self.category_code)

    def __repr__(self) -> str:
        return f"<CategoryBalance {self.key} {self.balance}>"
