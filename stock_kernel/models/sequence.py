"""
Module: stock_kernel.models.sequence
Responsibility: Named counter rows used by SequenceService.

Each row is locked with SELECT ... FOR UPDATE while it is incremented, so
the row itself is the only source of truth for the next value.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class SequenceCounter(Base):
    """A named monotonic counter (e.g. "transfer_number:240101")."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
