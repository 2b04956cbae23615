"""
SQLAlchemy-backed product stores.

Responsibility:
    Versioned read/write access to the central and franchise-local stock
    counters.  ``get_stock`` returns (value, version); ``set_stock`` is a
    compare-and-set UPDATE that only succeeds when the stored version still
    equals the version the caller read.

Architecture position:
    Kernel > Services.  Only StockCoordinator calls ``set_stock``; the
    architecture tests fail if any other kernel module does.

Invariants enforced:
    - Two writers holding the same version cannot both write: the second
      UPDATE matches zero rows and raises ConcurrentModificationError.
    - New products start at stock 0.  Opening balances are recorded
      through StockCoordinator.adjust_direct(INITIAL_STOCK) so the ledger
      holds the full history of every counter.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stock_kernel.domain.stores import CentralProductInfo, LocalProductInfo, StockSnapshot
from stock_kernel.exceptions import (
    ConcurrentModificationError,
    LocalProductNotFoundError,
    ProductNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.product import CentralProduct, FranchiseProduct

logger = get_logger("services.product_store")


class SqlProductStore:
    """Central catalog products and their authoritative stock counters."""

    def __init__(self, session: Session):
        self.session = session

    def add_product(
        self,
        sku: str,
        name: str,
        created_by: UUID,
        cost_price: Decimal | None = None,
        sale_price: Decimal | None = None,
        min_stock: int = 0,
    ) -> CentralProductInfo:
        product = CentralProduct(
            sku=sku,
            name=name,
            cost_price=cost_price,
            sale_price=sale_price,
            stock=0,
            stock_version=0,
            min_stock=min_stock,
            is_active=True,
            created_by_id=created_by,
        )
        self.session.add(product)
        self.session.flush()
        logger.info(
            "central_product_added",
            extra={"product_id": str(product.id), "sku": sku},
        )
        return product.to_info()

    def get_product(self, product_id: UUID) -> CentralProductInfo:
        product = self.session.get(CentralProduct, product_id, populate_existing=True)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product.to_info()

    def get_stock(self, product_id: UUID) -> StockSnapshot:
        row = self.session.execute(
            select(CentralProduct.stock, CentralProduct.stock_version)
            .where(CentralProduct.id == product_id)
        ).one_or_none()
        if row is None:
            raise ProductNotFoundError(product_id)
        return StockSnapshot(value=row.stock, version=row.stock_version)

    def set_stock(self, product_id: UUID, value: int, expected_version: int) -> int:
        """
        Write ``value`` if the counter is still at ``expected_version``.

        Returns:
            The new version.

        Raises:
            ConcurrentModificationError: The version moved since it was read.
            ProductNotFoundError: The product does not exist.
        """
        if value < 0:
            raise ValueError(f"Stock for {product_id} cannot be set to {value}")
        result = self.session.execute(
            update(CentralProduct)
            .where(
                CentralProduct.id == product_id,
                CentralProduct.stock_version == expected_version,
            )
            .values(stock=value, stock_version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self.get_stock(product_id)
            logger.warning(
                "stock_version_conflict",
                extra={
                    "scope": "central",
                    "product_id": str(product_id),
                    "expected_version": expected_version,
                    "actual_version": current.version,
                },
            )
            raise ConcurrentModificationError(
                "CentralProduct", str(product_id),
                expected=expected_version, actual=current.version,
            )
        return expected_version + 1


class SqlFranchiseProductStore:
    """Franchise-local mirror products and their stock counters."""

    def __init__(self, session: Session):
        self.session = session

    def add_product(
        self,
        tenant_id: UUID,
        central_product_id: UUID,
        name: str,
        created_by: UUID,
        selling_price: Decimal | None = None,
        min_stock: int = 0,
    ) -> LocalProductInfo:
        product = FranchiseProduct(
            tenant_id=tenant_id,
            central_product_id=central_product_id,
            name=name,
            selling_price=selling_price,
            stock=0,
            stock_version=0,
            min_stock=min_stock,
            is_active=True,
            created_by_id=created_by,
        )
        self.session.add(product)
        self.session.flush()
        logger.info(
            "franchise_product_added",
            extra={
                "product_id": str(product.id),
                "tenant_id": str(tenant_id),
                "central_product_id": str(central_product_id),
            },
        )
        return product.to_info()

    def find_product(self, product_id: UUID) -> LocalProductInfo | None:
        """Look a mirror record up by id regardless of tenant."""
        product = self.session.get(FranchiseProduct, product_id, populate_existing=True)
        return product.to_info() if product is not None else None

    def get_product(self, tenant_id: UUID, product_id: UUID) -> LocalProductInfo:
        info = self.find_product(product_id)
        if info is None or info.tenant_id != tenant_id:
            raise LocalProductNotFoundError(product_id, tenant_id)
        return info

    def get_stock(self, tenant_id: UUID, product_id: UUID) -> StockSnapshot:
        row = self.session.execute(
            select(FranchiseProduct.stock, FranchiseProduct.stock_version)
            .where(
                FranchiseProduct.id == product_id,
                FranchiseProduct.tenant_id == tenant_id,
            )
        ).one_or_none()
        if row is None:
            raise LocalProductNotFoundError(product_id, tenant_id)
        return StockSnapshot(value=row.stock, version=row.stock_version)

    def set_stock(
        self,
        tenant_id: UUID,
        product_id: UUID,
        value: int,
        expected_version: int,
    ) -> int:
        """Compare-and-set write of a local counter; see SqlProductStore.set_stock."""
        if value < 0:
            raise ValueError(f"Stock for {product_id} cannot be set to {value}")
        result = self.session.execute(
            update(FranchiseProduct)
            .where(
                FranchiseProduct.id == product_id,
                FranchiseProduct.tenant_id == tenant_id,
                FranchiseProduct.stock_version == expected_version,
            )
            .values(stock=value, stock_version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self.get_stock(tenant_id, product_id)
            logger.warning(
                "stock_version_conflict",
                extra={
                    "scope": "local",
                    "tenant_id": str(tenant_id),
                    "product_id": str(product_id),
                    "expected_version": expected_version,
                    "actual_version": current.version,
                },
            )
            raise ConcurrentModificationError(
                "FranchiseProduct", str(product_id),
                expected=expected_version, actual=current.version,
            )
        return expected_version + 1
