"""
Module: stock_kernel.models.transfer
Responsibility: ORM persistence for the transfer aggregate: header, line
    items and status history.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.  Status changes go through
    services/transfer_state_machine.py, which writes them with a
    compare-and-set UPDATE on the current status.

Invariants enforced:
    - status is one of the lifecycle values (DB check constraint).
    - transfer_number is unique.
    - Item quantity > 0 (DB check constraint).
    - UNIQUE(transfer_id, position) on status events keeps the history a
      single ordered chain.
    - Items and status events are immutable after insert (ORM listeners
      in db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, UUIDString
from stock_kernel.domain.transfer import (
    StatusEvent,
    Transfer,
    TransferItem,
    TransferStatus,
)

_STATUS_CHECK = (
    "IN ('requested', 'pending', 'rejected', 'processing', "
    "'shipped', 'delivered', 'cancelled')"
)


class TransferModel(Base):
    """Transfer header."""

    __tablename__ = "transfers"

    __table_args__ = (
        CheckConstraint(f"status {_STATUS_CHECK}", name="ck_transfers_valid_status"),
        Index("idx_transfers_tenant_status", "tenant_id", "status"),
        Index("idx_transfers_created_at", "created_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    transfer_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    requested_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    items: Mapped[list["TransferItemModel"]] = relationship(
        "TransferItemModel",
        back_populates="transfer",
        order_by="TransferItemModel.line_no",
        lazy="selectin",
    )
    status_events: Mapped[list["TransferStatusEventModel"]] = relationship(
        "TransferStatusEventModel",
        back_populates="transfer",
        order_by="TransferStatusEventModel.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Transfer {self.transfer_number} status={self.status}>"

    def to_dto(self) -> Transfer:
        return Transfer(
            id=self.id,
            tenant_id=self.tenant_id,
            transfer_number=self.transfer_number,
            status=TransferStatus(self.status),
            items=tuple(item.to_dto() for item in self.items),
            status_history=tuple(event.to_dto() for event in self.status_events),
            requested_by=self.requested_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
            delivered_by=self.delivered_by,
            delivered_at=self.delivered_at,
            notes=self.notes,
        )


class TransferItemModel(Base):
    """One transfer line with its snapshotted unit price."""

    __tablename__ = "transfer_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transfer_items_quantity_positive"),
        UniqueConstraint("transfer_id", "line_no", name="uq_transfer_items_line"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("transfers.id"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    central_product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("central_products.id"), nullable=False,
    )
    local_product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("franchise_products.id"), nullable=False,
    )
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    transfer: Mapped[TransferModel] = relationship(back_populates="items")

    def to_dto(self) -> TransferItem:
        return TransferItem(
            id=self.id,
            central_product_id=self.central_product_id,
            local_product_id=self.local_product_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
        )


class TransferStatusEventModel(Base):
    """One status history entry (transition or note)."""

    __tablename__ = "transfer_status_events"

    __table_args__ = (
        CheckConstraint(f"status {_STATUS_CHECK}", name="ck_transfer_events_valid_status"),
        UniqueConstraint("transfer_id", "position", name="uq_transfer_events_position"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("transfers.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    transfer: Mapped[TransferModel] = relationship(back_populates="status_events")

    def to_dto(self) -> StatusEvent:
        return StatusEvent(
            position=self.position,
            status=TransferStatus(self.status),
            notes=self.notes,
            changed_by=self.changed_by,
            occurred_at=self.occurred_at,
        )
