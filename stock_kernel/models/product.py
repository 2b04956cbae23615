"""
Module: stock_kernel.models.product
Responsibility: ORM persistence for central catalog products and their
    franchise-local mirror records, including the two stock counters.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - stock >= 0 on both tables (DB check constraint).
    - stock_version is bumped on every counter write; the product stores
      update stock only WHERE stock_version = expected.
    - A franchise product references exactly one central product, and a
      tenant holds at most one mirror per central product.

Failure modes:
    - IntegrityError on a negative stock write or a duplicate mirror.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.domain.stores import CentralProductInfo, LocalProductInfo


class CentralProduct(TrackedBase):
    """A product in the main catalog, holding authoritative stock."""

    __tablename__ = "central_products"

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_central_products_stock_non_negative"),
        CheckConstraint("min_stock >= 0", name="ck_central_products_min_stock"),
    )

    sku: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    cost_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    sale_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    stock: Mapped[int] = mapped_column(nullable=False, default=0)
    stock_version: Mapped[int] = mapped_column(nullable=False, default=0)
    min_stock: Mapped[int] = mapped_column(nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<CentralProduct {self.sku} stock={self.stock} v{self.stock_version}>"

    def to_info(self) -> CentralProductInfo:
        return CentralProductInfo(
            id=self.id,
            sku=self.sku,
            name=self.name,
            cost_price=self.cost_price,
            sale_price=self.sale_price,
            stock=self.stock,
            min_stock=self.min_stock,
            is_active=self.is_active,
        )


class FranchiseProduct(TrackedBase):
    """A franchise's local mirror of one central product."""

    __tablename__ = "franchise_products"

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_franchise_products_stock_non_negative"),
        CheckConstraint("min_stock >= 0", name="ck_franchise_products_min_stock"),
        UniqueConstraint(
            "tenant_id", "central_product_id",
            name="uq_franchise_products_tenant_central",
        ),
        Index("idx_franchise_products_tenant_stock", "tenant_id", "stock"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    central_product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("central_products.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    selling_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    stock: Mapped[int] = mapped_column(nullable=False, default=0)
    stock_version: Mapped[int] = mapped_column(nullable=False, default=0)
    min_stock: Mapped[int] = mapped_column(nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<FranchiseProduct {self.name} tenant={self.tenant_id} "
            f"stock={self.stock} v{self.stock_version}>"
        )

    def to_info(self) -> LocalProductInfo:
        return LocalProductInfo(
            id=self.id,
            tenant_id=self.tenant_id,
            central_product_id=self.central_product_id,
            name=self.name,
            selling_price=self.selling_price,
            stock=self.stock,
            min_stock=self.min_stock,
            is_active=self.is_active,
        )
