"""
Module: stock_kernel.selectors.ledger_selector
Responsibility: Read-side queries over the stock ledger and the counters it
    explains: entries by reference, full streams, per-type statistics,
    low-stock alerts, and counter reconciliation.
Architecture position: Kernel > Selectors.  Read-only.

Reconciliation:
    A stream is consistent when its first entry starts from 0, each entry's
    previous_stock equals the new_stock before it, and the running sum of
    quantities equals the live counter.  An empty stream is consistent only
    if the counter is 0.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, or_, select

from stock_kernel.domain.ledger import StockLedgerEntry, StockScope, TransactionType, stream_key
from stock_kernel.logging_config import get_logger
from stock_kernel.models.product import CentralProduct, FranchiseProduct
from stock_kernel.models.stock_ledger import StockLedgerEntryModel
from stock_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.ledger")


@dataclass(frozen=True)
class TransactionTypeStats:
    transaction_type: TransactionType
    count: int
    total_quantity: int
    total_cost: Decimal


@dataclass(frozen=True)
class LowStockItem:
    product_id: UUID
    name: str
    stock: int
    min_stock: int

    @property
    def out_of_stock(self) -> bool:
        return self.stock == 0


@dataclass(frozen=True)
class StockOverview:
    tenant_id: UUID
    total_products: int
    low_stock: int
    out_of_stock: int


@dataclass(frozen=True)
class ReconciliationResult:
    stream_key: str
    counter_stock: int
    ledger_stock: int
    entry_count: int
    first_break_position: int | None

    @property
    def is_consistent(self) -> bool:
        return self.first_break_position is None and self.counter_stock == self.ledger_stock


class LedgerSelector(BaseSelector[StockLedgerEntryModel]):
    """Queries over stock ledger entries and counters."""

    def entries_for_reference(self, reference_id: str) -> list[StockLedgerEntry]:
        """All entries carrying ``reference_id`` (e.g. a transfer number)."""
        models = self.session.execute(
            select(StockLedgerEntryModel)
            .where(StockLedgerEntryModel.reference_id == reference_id)
            .order_by(
                StockLedgerEntryModel.created_at,
                StockLedgerEntryModel.stream_key,
                StockLedgerEntryModel.stream_position,
            )
        ).scalars().all()
        return [m.to_dto() for m in models]

    def stream(
        self,
        scope: StockScope,
        product_id: UUID,
        tenant_id: UUID | None = None,
    ) -> list[StockLedgerEntry]:
        """One counter's entries, oldest first."""
        models = self.session.execute(
            select(StockLedgerEntryModel)
            .where(StockLedgerEntryModel.stream_key == stream_key(scope, product_id, tenant_id))
            .order_by(StockLedgerEntryModel.stream_position)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def search(
        self,
        tenant_id: UUID | None,
        text: str,
        transaction_type: TransactionType | None = None,
        limit: int = 50,
    ) -> list[StockLedgerEntry]:
        """Entries whose reference, notes or batch number contain ``text``."""
        pattern = f"%{text}%"
        stmt = select(StockLedgerEntryModel).where(
            or_(
                StockLedgerEntryModel.reference_id.ilike(pattern),
                StockLedgerEntryModel.notes.ilike(pattern),
                StockLedgerEntryModel.batch_number.ilike(pattern),
            )
        )
        if tenant_id is not None:
            stmt = stmt.where(StockLedgerEntryModel.tenant_id == tenant_id)
        if transaction_type is not None:
            stmt = stmt.where(
                StockLedgerEntryModel.transaction_type == TransactionType(transaction_type).value
            )
        models = self.session.execute(
            stmt.order_by(StockLedgerEntryModel.created_at.desc()).limit(limit)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def transaction_stats(
        self,
        tenant_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[TransactionTypeStats]:
        """Count, total quantity and total cost per transaction type."""
        stmt = select(
            StockLedgerEntryModel.transaction_type,
            func.count(),
            func.coalesce(func.sum(StockLedgerEntryModel.quantity), 0),
            func.coalesce(func.sum(StockLedgerEntryModel.total_cost), 0),
        )
        if tenant_id is not None:
            stmt = stmt.where(StockLedgerEntryModel.tenant_id == tenant_id)
        if start is not None:
            stmt = stmt.where(StockLedgerEntryModel.created_at >= start)
        if end is not None:
            stmt = stmt.where(StockLedgerEntryModel.created_at <= end)
        rows = self.session.execute(
            stmt.group_by(StockLedgerEntryModel.transaction_type)
            .order_by(StockLedgerEntryModel.transaction_type)
        ).all()
        return [
            TransactionTypeStats(
                transaction_type=TransactionType(tx_type),
                count=count,
                total_quantity=int(quantity),
                total_cost=Decimal(str(cost)),
            )
            for tx_type, count, quantity, cost in rows
        ]

    def low_stock(self, tenant_id: UUID, limit: int | None = None) -> list[LowStockItem]:
        """Active local products at or below their minimum stock, emptiest first."""
        stmt = (
            select(FranchiseProduct)
            .where(
                FranchiseProduct.tenant_id == tenant_id,
                FranchiseProduct.is_active.is_(True),
                FranchiseProduct.stock <= FranchiseProduct.min_stock,
            )
            .order_by(FranchiseProduct.stock, FranchiseProduct.name)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        models = self.session.execute(stmt).scalars().all()
        return [
            LowStockItem(product_id=m.id, name=m.name, stock=m.stock, min_stock=m.min_stock)
            for m in models
        ]

    def stock_overview(self, tenant_id: UUID) -> StockOverview:
        total, low, out = self.session.execute(
            select(
                func.count(),
                func.coalesce(
                    func.sum(case((FranchiseProduct.stock <= FranchiseProduct.min_stock, 1), else_=0)),
                    0,
                ),
                func.coalesce(
                    func.sum(case((FranchiseProduct.stock == 0, 1), else_=0)), 0,
                ),
            ).where(
                FranchiseProduct.tenant_id == tenant_id,
                FranchiseProduct.is_active.is_(True),
            )
        ).one()
        return StockOverview(
            tenant_id=tenant_id,
            total_products=total,
            low_stock=int(low),
            out_of_stock=int(out),
        )

    def _counter(self, scope: StockScope, product_id: UUID, tenant_id: UUID | None) -> int:
        if scope == StockScope.CENTRAL:
            stmt = select(CentralProduct.stock).where(CentralProduct.id == product_id)
        else:
            stmt = select(FranchiseProduct.stock).where(
                FranchiseProduct.id == product_id,
                FranchiseProduct.tenant_id == tenant_id,
            )
        return self.session.execute(stmt).scalar_one()

    def reconcile(
        self,
        scope: StockScope,
        product_id: UUID,
        tenant_id: UUID | None = None,
    ) -> ReconciliationResult:
        """Replay one stream and compare it to its live counter."""
        scope = StockScope(scope)
        entries = self.stream(scope, product_id, tenant_id)
        running = 0
        first_break = None
        for entry in entries:
            if first_break is None and (
                entry.previous_stock != running
                or entry.new_stock != entry.previous_stock + entry.quantity
            ):
                first_break = entry.stream_position
            running += entry.quantity

        result = ReconciliationResult(
            stream_key=stream_key(scope, product_id, tenant_id),
            counter_stock=self._counter(scope, product_id, tenant_id),
            ledger_stock=running,
            entry_count=len(entries),
            first_break_position=first_break,
        )
        if not result.is_consistent:
            logger.error(
                "ledger_reconciliation_failed",
                extra={
                    "stream_key": result.stream_key,
                    "counter_stock": result.counter_stock,
                    "ledger_stock": result.ledger_stock,
                    "first_break_position": first_break,
                },
            )
        return result

    def reconcile_all(self) -> Iterator[ReconciliationResult]:
        """Reconcile every central and local counter."""
        central_ids = self.session.execute(
            select(CentralProduct.id).order_by(CentralProduct.sku)
        ).scalars().all()
        for product_id in central_ids:
            yield self.reconcile(StockScope.CENTRAL, product_id)

        local_rows = self.session.execute(
            select(FranchiseProduct.id, FranchiseProduct.tenant_id)
            .order_by(FranchiseProduct.tenant_id, FranchiseProduct.name)
        ).all()
        for product_id, tenant_id in local_rows:
            yield self.reconcile(StockScope.LOCAL, product_id, tenant_id)
