"""
Module: stock_kernel.selectors.transfer_selector
Responsibility: Read-side projections over transfers: single lookup,
    paginated and filtered listing, and per-tenant aggregate statistics.
Architecture position: Kernel > Selectors.  Read-only.

Paging rules:
    - page is clamped to >= 1; page_size to [1, max_page_size].
    - Unknown sort fields fall back to created_at (logged).
    - Ties are broken by id so page boundaries are stable.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from stock_kernel.domain.transfer import Transfer, TransferStatus
from stock_kernel.domain.values import Page
from stock_kernel.exceptions import TransferNotFoundError, ValidationError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.transfer import TransferItemModel, TransferModel
from stock_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.transfer")

SORTABLE_FIELDS = {
    "created_at": TransferModel.created_at,
    "updated_at": TransferModel.updated_at,
    "transfer_number": TransferModel.transfer_number,
    "status": TransferModel.status,
}


@dataclass(frozen=True)
class TransferStats:
    """Aggregate counts and delivered totals for one tenant (or all)."""

    tenant_id: UUID | None
    by_status: dict[TransferStatus, int]
    total_transfers: int
    delivered_units: int
    delivered_value: Decimal


class TransferQueryService(BaseSelector[TransferModel]):
    """Listing, lookup and statistics for transfers."""

    def __init__(self, session, default_page_size: int = 10, max_page_size: int = 100):
        super().__init__(session)
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

    def get_transfer(self, transfer_id: UUID) -> Transfer:
        model = self.session.get(TransferModel, transfer_id)
        if model is None:
            raise TransferNotFoundError(transfer_id)
        return model.to_dto()

    def get_by_number(self, transfer_number: str) -> Transfer:
        model = self.session.execute(
            select(TransferModel).where(TransferModel.transfer_number == transfer_number)
        ).scalar_one_or_none()
        if model is None:
            raise TransferNotFoundError(transfer_number)
        return model.to_dto()

    def list_transfers(
        self,
        tenant_id: UUID | None = None,
        status: TransferStatus | None = None,
        page: int = 1,
        page_size: int | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Page[Transfer]:
        page = max(1, int(page))
        size = page_size if page_size is not None else self._default_page_size
        size = min(max(1, int(size)), self._max_page_size)

        column = SORTABLE_FIELDS.get(sort_by)
        if column is None:
            logger.warning("unknown_sort_field", extra={"sort_by": sort_by})
            column = SORTABLE_FIELDS["created_at"]
        ordering = column.asc() if str(sort_order).lower() == "asc" else column.desc()

        filters = []
        if tenant_id is not None:
            filters.append(TransferModel.tenant_id == tenant_id)
        if status is not None:
            try:
                status = TransferStatus(status)
            except ValueError:
                raise ValidationError(
                    f"Unknown transfer status {status!r}", field="status",
                ) from None
            filters.append(TransferModel.status == status.value)

        total = self.session.execute(
            select(func.count()).select_from(TransferModel).where(*filters)
        ).scalar_one()

        models = self.session.execute(
            select(TransferModel)
            .where(*filters)
            .order_by(ordering, TransferModel.id)
            .offset((page - 1) * size)
            .limit(size)
        ).scalars().all()

        return Page(
            items=tuple(m.to_dto() for m in models),
            total=total,
            page=page,
            page_size=size,
        )

    def transfer_stats(self, tenant_id: UUID | None = None) -> TransferStats:
        filters = []
        if tenant_id is not None:
            filters.append(TransferModel.tenant_id == tenant_id)

        rows = self.session.execute(
            select(TransferModel.status, func.count())
            .where(*filters)
            .group_by(TransferModel.status)
        ).all()
        by_status = {status: 0 for status in TransferStatus}
        for status, count in rows:
            by_status[TransferStatus(status)] = count

        units, value = self.session.execute(
            select(
                func.coalesce(func.sum(TransferItemModel.quantity), 0),
                func.coalesce(
                    func.sum(TransferItemModel.quantity * TransferItemModel.unit_price), 0,
                ),
            )
            .join(TransferModel, TransferItemModel.transfer_id == TransferModel.id)
            .where(TransferModel.status == TransferStatus.DELIVERED.value, *filters)
        ).one()

        return TransferStats(
            tenant_id=tenant_id,
            by_status=by_status,
            total_transfers=sum(by_status.values()),
            delivered_units=int(units),
            delivered_value=Decimal(str(value)),
        )
