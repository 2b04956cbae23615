"""Kernel services: the write side of the stock kernel."""

from stock_kernel.services.product_store import SqlFranchiseProductStore, SqlProductStore
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_coordinator import (
    AtomicityMode,
    MoveReceipt,
    StockCoordinator,
)
from stock_kernel.services.stock_ledger import StockLedger
from stock_kernel.services.transfer_state_machine import TransferStateMachine

__all__ = [
    "AtomicityMode",
    "MoveReceipt",
    "SequenceService",
    "SqlFranchiseProductStore",
    "SqlProductStore",
    "StockCoordinator",
    "StockLedger",
    "TransferStateMachine",
]
