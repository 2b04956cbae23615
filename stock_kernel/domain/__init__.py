"""Pure domain types for the stock kernel. ZERO I/O."""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.ledger import (
    EntryMetadata,
    LedgerEntryDraft,
    StockLedgerEntry,
    StockScope,
    TransactionType,
)
from stock_kernel.domain.principal import (
    AuthenticatedPrincipal,
    ContextIdentityProvider,
    IdentityProvider,
    StaticIdentityProvider,
)
from stock_kernel.domain.stores import StockSnapshot
from stock_kernel.domain.transfer import (
    TERMINAL_TRANSFER_STATUSES,
    TRANSFER_TRANSITIONS,
    StatusEvent,
    Transfer,
    TransferItem,
    TransferItemRequest,
    TransferStatus,
)
from stock_kernel.domain.values import Page

__all__ = [
    "AuthenticatedPrincipal",
    "Clock",
    "ContextIdentityProvider",
    "DeterministicClock",
    "EntryMetadata",
    "IdentityProvider",
    "LedgerEntryDraft",
    "Page",
    "StaticIdentityProvider",
    "StatusEvent",
    "StockLedgerEntry",
    "StockScope",
    "StockSnapshot",
    "SystemClock",
    "TERMINAL_TRANSFER_STATUSES",
    "TRANSFER_TRANSITIONS",
    "TransactionType",
    "Transfer",
    "TransferItem",
    "TransferItemRequest",
    "TransferStatus",
]
