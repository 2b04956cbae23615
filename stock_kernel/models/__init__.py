"""ORM models. Importing this package registers every table on Base.metadata."""

from stock_kernel.models.product import CentralProduct, FranchiseProduct
from stock_kernel.models.sequence import SequenceCounter
from stock_kernel.models.stock_ledger import StockLedgerEntryModel
from stock_kernel.models.transfer import (
    TransferItemModel,
    TransferModel,
    TransferStatusEventModel,
)

__all__ = [
    "CentralProduct",
    "FranchiseProduct",
    "SequenceCounter",
    "StockLedgerEntryModel",
    "TransferItemModel",
    "TransferModel",
    "TransferStatusEventModel",
]
