"""
Stock store collaborator interfaces (``stock_kernel.domain.stores``).

Responsibility
--------------
Declares the versioned read/write contract the coordinator needs from the
persistence layer for the two counter kinds.  The SQLAlchemy-backed
implementations live in ``services/product_store.py``.

Invariants enforced
-------------------
* Every read returns the counter value together with its version stamp.
* ``set_stock`` only succeeds when the stored version still equals
  ``expected_version``; otherwise it raises ConcurrentModificationError.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID


@dataclass(frozen=True)
class StockSnapshot:
    """A counter value and the version it was read at."""

    value: int
    version: int


@dataclass(frozen=True)
class CentralProductInfo:
    id: UUID
    sku: str
    name: str
    cost_price: Decimal | None
    sale_price: Decimal | None
    stock: int
    min_stock: int
    is_active: bool

    @property
    def transfer_price(self) -> Decimal:
        """Price snapshotted onto transfer lines: cost, else sale, else zero."""
        if self.cost_price:
            return self.cost_price
        if self.sale_price:
            return self.sale_price
        return Decimal("0")


@dataclass(frozen=True)
class LocalProductInfo:
    id: UUID
    tenant_id: UUID
    central_product_id: UUID
    name: str
    selling_price: Decimal | None
    stock: int
    min_stock: int
    is_active: bool


class ProductStore(Protocol):
    """Central catalog counters."""

    def get_product(self, product_id: UUID) -> CentralProductInfo: ...

    def get_stock(self, product_id: UUID) -> StockSnapshot: ...

    def set_stock(self, product_id: UUID, value: int, expected_version: int) -> int: ...


class FranchiseProductStore(Protocol):
    """Franchise-local mirror counters."""

    def find_product(self, product_id: UUID) -> LocalProductInfo | None: ...

    def get_product(self, tenant_id: UUID, product_id: UUID) -> LocalProductInfo: ...

    def get_stock(self, tenant_id: UUID, product_id: UUID) -> StockSnapshot: ...

    def set_stock(
        self, tenant_id: UUID, product_id: UUID, value: int, expected_version: int
    ) -> int: ...
