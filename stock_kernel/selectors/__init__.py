"""Selectors for the stock kernel (read side)."""

from stock_kernel.selectors.ledger_selector import (
    LedgerSelector,
    LowStockItem,
    ReconciliationResult,
    StockOverview,
    TransactionTypeStats,
)
from stock_kernel.selectors.transfer_selector import TransferQueryService, TransferStats

__all__ = [
    "LedgerSelector",
    "LowStockItem",
    "ReconciliationResult",
    "StockOverview",
    "TransactionTypeStats",
    "TransferQueryService",
    "TransferStats",
]
