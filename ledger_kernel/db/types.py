"""
Module: ledger_kernel.db.types
Responsibility: Annotated type aliases for ledger columns.  Centralizes the
    fixed-point amount layout and the legacy identifier widths so that every
    model uses identical column definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Each alias is registered in ``Base.type_annotation_map``; a model column
declared as ``Mapped[AccountId]`` gets ``String(11)`` without repeating it.

Audit relevance:
    Every monetary column uses Amount (Numeric(12, 2)), matching the legacy
    signed S9(10)V99 fields byte for byte once rendered.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String


# Signed monetary amount, 10 integer digits and 2 decimal places
Amount = Annotated[Decimal, Numeric(12, 2)]

# 11-digit account identifier
AccountId = Annotated[str, String(11)]

# 16-digit card number
CardNumber = Annotated[str, String(16)]

# 2-character transaction type code
TypeCode = Annotated[str, String(2)]

# 4-digit transaction category code
CategoryCode = Annotated[str, String(4)]

# Monotonic sequence number / transaction identifier
Sequence = Annotated[int, BigInteger]

COLUMN_TYPES = {
    alias: alias.__metadata__[0]
    for alias in (Amount, AccountId, CardNumber, TypeCode, CategoryCode, Sequence)
}

AMOUNT_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
