"""
Values -- Fixed-point amount arithmetic.

Responsibility:
    Normalizes every monetary input to a Decimal with exactly two fractional
    digits, rounded half-up, and provides the ``Amount`` value object used by
    validation and posting.  Reproduces the legacy signed S9(10)V99 field:
    values outside +/-9999999999.99 are not representable.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - PrecisionError for binary floats, NaN/Infinity, booleans, non-numeric
      strings, and out-of-range magnitudes.

Audit relevance:
    ``99.999`` becomes ``100.00`` and ``123.45`` stays ``123.45``.  Floats are
    refused outright; a float that "looks like" 0.10 is not 0.10.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from ledger_kernel.db.types import AMOUNT_DECIMAL_PLACES, DEFAULT_ROUNDING
from ledger_kernel.exceptions import PrecisionError

AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_DECIMAL_PLACES)
MAX_AMOUNT = Decimal("9999999999.99")


def normalize_amount(value: Any) -> Decimal:
    """
    Quantize ``value`` to two fractional digits using ROUND_HALF_UP.

    Preconditions:
        - value is a Decimal, int, str, or Amount.

    Postconditions:
        - Returns a finite Decimal with exponent -2 and
          ``abs(result) <= MAX_AMOUNT``.

    Raises:
        PrecisionError: If the value cannot be represented.
    """
    if isinstance(value, Amount):
        return value.value
    if isinstance(value, bool):
        raise PrecisionError(value, "booleans are not amounts")
    if isinstance(value, float):
        raise PrecisionError(value, "binary floats are not accepted")

    if isinstance(value, Decimal):
        candidate = value
    elif isinstance(value, int):
        candidate = Decimal(value)
    elif isinstance(value, str):
        try:
            candidate = Decimal(value.strip())
        except InvalidOperation as exc:
            raise PrecisionError(value, "not a decimal number") from exc
    else:
        raise PrecisionError(value, f"unsupported type {type(value).__name__}")

    if not candidate.is_finite():
        raise PrecisionError(value, "not a finite number")

    try:
        rounded = candidate.quantize(AMOUNT_QUANTUM, rounding=DEFAULT_ROUNDING)
    except InvalidOperation as exc:
        raise PrecisionError(value, "magnitude exceeds decimal context") from exc

    if abs(rounded) > MAX_AMOUNT:
        raise PrecisionError(value, f"magnitude exceeds {MAX_AMOUNT}")

    # Decimal("-0.00") renders with a sign; canonicalize it
    if rounded.is_zero():
        rounded = Decimal("0.00")
    return rounded


def format_amount(value: Decimal) -> str:
    """Render the canonical signed decimal string, e.g. ``-12.50``."""
    return f"{normalize_amount(value):f}"


@dataclass(frozen=True, slots=True)
class Amount:
    """
    Signed fixed-point amount value object.

    Contract:
        Wraps a Decimal normalized by ``normalize_amount``.

    Guarantees:
        - Immutable and hashable (frozen dataclass with slots)
        - value always has exactly two fractional digits
        - Arithmetic results are re-checked against the legacy range
    """

    value: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", normalize_amount(self.value))

    @classmethod
    def of(cls, value: Decimal | str | int) -> Amount:
        """Factory method for creating an Amount."""
        return cls(value=normalize_amount(value))

    @classmethod
    def zero(cls) -> Amount:
        return cls(value=Decimal("0.00"))

    @property
    def is_zero(self) -> bool:
        return self.value == Decimal("0")

    @property
    def is_positive(self) -> bool:
        return self.value > Decimal("0")

    @property
    def is_negative(self) -> bool:
        return self.value < Decimal("0")

    def __add__(self, other: Amount) -> Amount:
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self.value + other.value)

    def __sub__(self, other: Amount) -> Amount:
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self.value - other.value)

    def __neg__(self) -> Amount:
        return Amount(-self.value)

    def __abs__(self) -> Amount:
        return Amount(abs(self.value))

    def __lt__(self, other: Amount) -> bool:
        if not isinstance(other, Amount):
            return NotImplemented
        return self.value < other.value

    def __le__(self, other: Amount) -> bool:
        if not isinstance(other, Amount):
            return NotImplemented
        return self.value <= other.value

    def __gt__(self, other: Amount) -> bool:
        if not isinstance(other, Amount):
            return NotImplemented
        return self.value > other.value

    def __ge__(self, other: Amount) -> bool:
        if not isinstance(other, Amount):
            return NotImplemented
        return self.value >= other.value

    def __str__(self) -> str:
        return f"{self.value:f}"

    def __repr__(self) -> str:
        return f"Amount({self.value:f})"
