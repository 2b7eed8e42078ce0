"""
Module: ledger_kernel.db.base
Responsibility: Declarative base for the ledger tables and the column type
    map every model relies on.
Architecture position: Kernel > DB.  Imported by every model module; imports
    only ``db.types``.

Column conventions:
    - Surrogate keys are UUIDs stored as 36-character strings.  Tables with
      a legacy natural key (accounts, card cross references, transactions)
      declare their own ``id``.
    - ``Decimal`` columns are Numeric(12, 2), the S9(10)V99 amount layout.
      Amounts are never floats.
    - The ``db.types`` aliases (AccountId, CardNumber, TypeCode, ...) map to
      their fixed-width columns through ``type_annotation_map``.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from ledger_kernel.db.types import COLUMN_TYPES


class UUIDString(TypeDecorator):
    """UUID held in a String(36) column, so SQLite and PostgreSQL agree."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(12, 2),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
        **COLUMN_TYPES,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds server-stamped ``created_at`` / ``updated_at`` columns.

    The stamps are bookkeeping for operators; they are not part of any
    balance and may change on rows whose amounts may not.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


UUID = PyUUID
