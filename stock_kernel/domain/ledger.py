"""
Stock ledger domain types (``stock_kernel.domain.ledger``).

Responsibility
--------------
Pure value objects for the append-only stock ledger: counter scopes,
transaction types with their sign rules, ledger entry drafts and persisted
ledger entries.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``new_stock = previous_stock + quantity`` for every entry.
* Outbound transaction types always carry a negative quantity, inbound
  types a positive one; ``adjustment`` keeps the caller's sign.
* A ledger stream is identified by ``stream_key``: central counters are
  shared by every tenant, local counters are per (tenant, product).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class StockScope(str, Enum):
    """Which counter a ledger entry belongs to."""

    CENTRAL = "central"
    LOCAL = "local"


class TransactionType(str, Enum):
    """Stock-affecting event kinds."""

    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    DAMAGE = "damage"
    EXPIRED = "expired"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    INITIAL_STOCK = "initial_stock"


OUTBOUND_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.SALE,
    TransactionType.DAMAGE,
    TransactionType.EXPIRED,
    TransactionType.TRANSFER_OUT,
})

INBOUND_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.PURCHASE,
    TransactionType.RETURN,
    TransactionType.TRANSFER_IN,
    TransactionType.INITIAL_STOCK,
})

# Reserved for StockCoordinator.move(); direct adjustments may not use them.
TRANSFER_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.TRANSFER_IN,
    TransactionType.TRANSFER_OUT,
})


def normalize_quantity(transaction_type: TransactionType, quantity: int) -> int:
    """Apply the sign rule of ``transaction_type`` to ``quantity``."""
    if transaction_type in OUTBOUND_TYPES:
        return -abs(quantity)
    if transaction_type in INBOUND_TYPES:
        return abs(quantity)
    return quantity


def stream_key(scope: StockScope, product_id: UUID, tenant_id: UUID | None = None) -> str:
    """Identify the counter a ledger entry is chained on.

    >>> stream_key(StockScope.CENTRAL, UUID(int=1))
    'central:00000000-0000-0000-0000-000000000001'
    """
    if scope == StockScope.CENTRAL:
        return f"central:{product_id}"
    if tenant_id is None:
        raise ValueError("Local stock streams require a tenant_id")
    return f"local:{tenant_id}:{product_id}"


@dataclass(frozen=True)
class EntryMetadata:
    """Optional descriptive fields carried by a ledger entry."""

    reference_id: str | None = None
    notes: str | None = None
    performed_by: UUID | None = None
    cost_per_unit: Decimal | None = None
    supplier: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class LedgerEntryDraft:
    """What a caller asks StockLedger.record() to append.

    ``previous_stock`` is the counter value the caller read; the ledger
    refuses the draft if its own last known stock differs.
    """

    scope: StockScope
    product_id: UUID
    tenant_id: UUID | None
    transaction_type: TransactionType
    quantity: int
    previous_stock: int
    performed_by: UUID
    reference_id: str | None = None
    notes: str | None = None
    cost_per_unit: Decimal | None = None
    supplier: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None

    @property
    def stream_key(self) -> str:
        return stream_key(self.scope, self.product_id, self.tenant_id)

    @property
    def new_stock(self) -> int:
        return self.previous_stock + self.quantity


@dataclass(frozen=True)
class StockLedgerEntry:
    """Immutable, persisted ledger entry."""

    id: UUID
    tenant_id: UUID | None
    product_id: UUID
    scope: StockScope
    transaction_type: TransactionType
    quantity: int
    previous_stock: int
    new_stock: int
    reference_id: str | None
    performed_by: UUID
    created_at: datetime
    stream_position: int
    notes: str | None = None
    cost_per_unit: Decimal | None = None
    total_cost: Decimal | None = None
    supplier: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None

    @property
    def stream_key(self) -> str:
        return stream_key(self.scope, self.product_id, self.tenant_id)
