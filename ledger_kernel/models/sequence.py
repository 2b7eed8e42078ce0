"""
Module: ledger_kernel.models.sequence
Responsibility: Named counter rows behind SequenceService.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.db.types import Sequence


class SequenceCounter(Base):
    """Last value handed out for one named sequence ("transaction").

    Allocation locks the row, so the value only moves forward under the
    lock and a rolled-back allocation is returned with its transaction.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), unique=True)
    current_value: Mapped[Sequence] = mapped_column(default=0)
