"""
BulkAdjustmentService -- many direct stock adjustments, one savepoint each.

Contract:
    ``apply()`` runs every request through StockCoordinator.adjust_direct
    inside its own SAVEPOINT.  A failing item is rolled back and reported;
    the remaining items still run.  Nothing is committed here.

Typical use is stock-take import: a list of counted corrections where a
bad row must not block the rest.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from stock_kernel.domain.ledger import EntryMetadata, StockLedgerEntry, StockScope, TransactionType
from stock_kernel.exceptions import StockKernelError
from stock_kernel.logging_config import get_logger
from stock_kernel.services.stock_coordinator import StockCoordinator

logger = get_logger("services.bulk_adjustment")


@dataclass(frozen=True)
class AdjustmentRequest:
    """One row of a bulk adjustment."""

    scope: StockScope
    product_id: UUID
    transaction_type: TransactionType
    quantity: int
    tenant_id: UUID | None = None
    metadata: EntryMetadata | None = None


@dataclass(frozen=True)
class AdjustmentOutcome:
    index: int
    request: AdjustmentRequest
    entry: StockLedgerEntry | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.entry is not None


@dataclass(frozen=True)
class BulkAdjustmentResult:
    outcomes: tuple[AdjustmentOutcome, ...]

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    @property
    def failures(self) -> tuple[AdjustmentOutcome, ...]:
        return tuple(o for o in self.outcomes if not o.succeeded)


class BulkAdjustmentService:
    """Applies adjustment batches with per-item isolation."""

    def __init__(self, session: Session, coordinator: StockCoordinator):
        self._session = session
        self._coordinator = coordinator

    def apply(self, requests: Sequence[AdjustmentRequest]) -> BulkAdjustmentResult:
        outcomes: list[AdjustmentOutcome] = []

        for index, request in enumerate(requests):
            savepoint = self._session.begin_nested()
            try:
                entry = self._coordinator.adjust_direct(
                    request.tenant_id,
                    request.scope,
                    request.product_id,
                    request.transaction_type,
                    request.quantity,
                    metadata=request.metadata,
                )
                savepoint.commit()
                outcomes.append(AdjustmentOutcome(index=index, request=request, entry=entry))
            except StockKernelError as exc:
                savepoint.rollback()
                outcomes.append(
                    AdjustmentOutcome(
                        index=index,
                        request=request,
                        error_code=exc.code,
                        error_message=str(exc),
                    )
                )
            except Exception as exc:
                savepoint.rollback()
                logger.exception("bulk_adjustment_item_crashed", extra={"index": index})
                outcomes.append(
                    AdjustmentOutcome(
                        index=index,
                        request=request,
                        error_code="UNHANDLED_EXCEPTION",
                        error_message=str(exc),
                    )
                )

        result = BulkAdjustmentResult(outcomes=tuple(outcomes))
        logger.info(
            "bulk_adjustment_completed",
            extra={
                "total_items": len(outcomes),
                "succeeded": result.succeeded,
                "failed": result.failed,
            },
        )
        return result
