"""
Module: stock_kernel.models.stock_ledger
Responsibility: ORM persistence for the append-only stock ledger.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.  Rows are written exclusively by
    services/stock_ledger.py (StockLedger.record).

Invariants enforced:
    - new_stock = previous_stock + quantity (DB check constraint).
    - new_stock >= 0 and previous_stock >= 0 (DB check constraints).
    - UNIQUE(stream_key, stream_position): two writers that both extend
      the same stream from the same position cannot both commit.
    - Rows are immutable after insert (ORM listeners in
      db/immutability.py).

Failure modes:
    - IntegrityError on a lost stream-position race; StockLedger converts
      it to ConcurrentModificationError.
    - ImmutabilityViolationError on UPDATE/DELETE.

Audit relevance:
    Replaying a stream from position 1 reconstructs its counter exactly.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString
from stock_kernel.domain.ledger import StockLedgerEntry, StockScope, TransactionType


class StockLedgerEntryModel(Base):
    """One immutable stock-affecting event."""

    __tablename__ = "stock_ledger_entries"

    __table_args__ = (
        UniqueConstraint(
            "stream_key", "stream_position",
            name="uq_stock_ledger_stream_position",
        ),
        CheckConstraint(
            "new_stock = previous_stock + quantity",
            name="ck_stock_ledger_arithmetic",
        ),
        CheckConstraint("new_stock >= 0", name="ck_stock_ledger_new_stock"),
        CheckConstraint("previous_stock >= 0", name="ck_stock_ledger_previous_stock"),
        CheckConstraint("quantity <> 0", name="ck_stock_ledger_quantity_nonzero"),
        CheckConstraint(
            "scope IN ('central', 'local')",
            name="ck_stock_ledger_scope",
        ),
        CheckConstraint(
            "transaction_type IN ('purchase', 'sale', 'adjustment', 'return', "
            "'damage', 'expired', 'transfer_in', 'transfer_out', 'initial_stock')",
            name="ck_stock_ledger_transaction_type",
        ),
        Index("idx_stock_ledger_tenant_product_time", "tenant_id", "product_id", "created_at"),
        Index("idx_stock_ledger_reference", "reference_id"),
        Index("idx_stock_ledger_type_time", "transaction_type", "created_at"),
    )

    tenant_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    previous_stock: Mapped[int] = mapped_column(nullable=False)
    new_stock: Mapped[int] = mapped_column(nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    performed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    stream_key: Mapped[str] = mapped_column(String(120), nullable=False)
    stream_position: Mapped[int] = mapped_column(nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cost_per_unit: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    supplier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StockLedgerEntry {self.stream_key}#{self.stream_position} "
            f"{self.transaction_type} {self.previous_stock}"
            f"{self.quantity:+d}={self.new_stock}>"
        )

    def to_dto(self) -> StockLedgerEntry:
        return StockLedgerEntry(
            id=self.id,
            tenant_id=self.tenant_id,
            product_id=self.product_id,
            scope=StockScope(self.scope),
            transaction_type=TransactionType(self.transaction_type),
            quantity=self.quantity,
            previous_stock=self.previous_stock,
            new_stock=self.new_stock,
            reference_id=self.reference_id,
            performed_by=self.performed_by,
            created_at=self.created_at,
            stream_position=self.stream_position,
            notes=self.notes,
            cost_per_unit=self.cost_per_unit,
            total_cost=self.total_cost,
            supplier=self.supplier,
            batch_number=self.batch_number,
            expiry_date=self.expiry_date,
        )
