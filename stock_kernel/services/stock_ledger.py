"""
StockLedger -- the append-only stock ledger and its single write path.

Responsibility:
    ``record()`` appends one entry to a counter's stream after checking it
    against the stream's last known stock.  ``history()`` streams entries
    back, newest first.

Architecture position:
    Kernel > Services.  Called by StockCoordinator only.  This is the only
    module that constructs StockLedgerEntryModel rows.

Invariants enforced:
    - new_stock = previous_stock + quantity, stamped here, never taken from
      the caller.
    - Compare-and-set: a draft whose previous_stock differs from the
      stream's last new_stock (0 for an empty stream) is rejected with
      ConcurrentModificationError and nothing is written.
    - new_stock >= 0; otherwise NegativeStockError.
    - initial_stock is only accepted as the first entry of a stream.
    - Each entry takes the next stream_position; the unique
      (stream_key, stream_position) constraint turns a lost insert race
      into ConcurrentModificationError.

Failure modes:
    - ConcurrentModificationError: stale previous_stock or lost race.
    - NegativeStockError, ValidationError: malformed draft.

Audit relevance:
    Replaying a stream from position 1 reproduces its counter.  See
    LedgerSelector.reconcile().
"""

from collections.abc import Iterator
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.ledger import (
    LedgerEntryDraft,
    StockLedgerEntry,
    StockScope,
    TransactionType,
    stream_key,
)
from stock_kernel.exceptions import (
    ConcurrentModificationError,
    NegativeStockError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_ledger import StockLedgerEntryModel
from stock_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")


class StockLedger(BaseService[StockLedgerEntryModel]):
    """
    Append-only ledger of stock-affecting events.

    Non-goals:
        - Does NOT touch stock counters; StockCoordinator pairs every
          record() with a versioned counter write.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _last_entry(self, key: str) -> StockLedgerEntryModel | None:
        return self.session.execute(
            select(StockLedgerEntryModel)
            .where(StockLedgerEntryModel.stream_key == key)
            .order_by(StockLedgerEntryModel.stream_position.desc())
            .limit(1)
        ).scalar_one_or_none()

    def last_known_stock(
        self,
        scope: StockScope,
        product_id: UUID,
        tenant_id: UUID | None = None,
    ) -> int:
        """Stock after the newest entry of the stream, or 0 if it is empty."""
        last = self._last_entry(stream_key(scope, product_id, tenant_id))
        return last.new_stock if last is not None else 0

    def record(self, draft: LedgerEntryDraft) -> StockLedgerEntry:
        """
        Append ``draft`` to its stream.

        Preconditions:
            - draft.quantity != 0.
            - draft.previous_stock is the counter value the caller read.

        Postconditions:
            - Exactly one row is flushed, at the next stream position.

        Raises:
            ConcurrentModificationError: previous_stock is stale, or a
                concurrent writer took the same stream position.
            NegativeStockError: the entry would leave the stream below zero.
            ValidationError: zero quantity, or initial_stock on a non-empty
                stream.
        """
        if isinstance(draft.quantity, bool) or not isinstance(draft.quantity, int):
            raise ValidationError("Ledger quantity must be an integer", field="quantity")
        if draft.quantity == 0:
            raise ValidationError("Ledger quantity must be non-zero", field="quantity")

        key = draft.stream_key
        last = self._last_entry(key)
        known = last.new_stock if last is not None else 0

        if draft.previous_stock != known:
            logger.warning(
                "ledger_cas_conflict",
                extra={
                    "stream_key": key,
                    "expected_previous": known,
                    "supplied_previous": draft.previous_stock,
                },
            )
            raise ConcurrentModificationError(
                "StockLedgerStream", key,
                expected=draft.previous_stock, actual=known,
            )

        if draft.transaction_type == TransactionType.INITIAL_STOCK and last is not None:
            raise ValidationError(
                f"initial_stock must be the first entry of {key}",
                field="transaction_type",
            )

        new_stock = draft.new_stock
        if new_stock < 0:
            raise NegativeStockError(key, draft.previous_stock, draft.quantity)

        total_cost = None
        if draft.cost_per_unit is not None:
            total_cost = draft.cost_per_unit * abs(draft.quantity)

        model = StockLedgerEntryModel(
            tenant_id=draft.tenant_id,
            product_id=draft.product_id,
            scope=draft.scope.value,
            transaction_type=draft.transaction_type.value,
            quantity=draft.quantity,
            previous_stock=draft.previous_stock,
            new_stock=new_stock,
            reference_id=draft.reference_id,
            performed_by=draft.performed_by,
            created_at=self._clock.now(),
            stream_key=key,
            stream_position=(last.stream_position + 1) if last is not None else 1,
            notes=draft.notes,
            cost_per_unit=draft.cost_per_unit,
            total_cost=total_cost,
            supplier=draft.supplier,
            batch_number=draft.batch_number,
            expiry_date=draft.expiry_date,
        )

        try:
            with self.session.begin_nested():
                self.session.add(model)
                self.session.flush()
        except IntegrityError as exc:
            logger.warning(
                "ledger_position_race_lost",
                extra={"stream_key": key, "stream_position": model.stream_position},
            )
            raise ConcurrentModificationError(
                "StockLedgerStream", key,
                expected=model.stream_position, actual="taken",
            ) from exc

        logger.info(
            "ledger_entry_recorded",
            extra={
                "entry_id": str(model.id),
                "stream_key": key,
                "stream_position": model.stream_position,
                "transaction_type": model.transaction_type,
                "quantity": model.quantity,
                "previous_stock": model.previous_stock,
                "new_stock": model.new_stock,
                "reference_id": model.reference_id,
            },
        )
        return model.to_dto()

    def history(
        self,
        tenant_id: UUID | None,
        product_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        scope: StockScope | None = None,
        batch_size: int = 200,
    ) -> Iterator[StockLedgerEntry]:
        """
        Lazily yield entries, newest first.

        ``tenant_id=None`` means every tenant, including central-only
        entries.  ``start`` and ``end`` are inclusive.  Nothing is queried
        until the first item is requested, and each call starts a fresh
        query, so callers can simply call again to restart.
        """
        stmt = select(StockLedgerEntryModel)
        if tenant_id is not None:
            stmt = stmt.where(StockLedgerEntryModel.tenant_id == tenant_id)
        if product_id is not None:
            stmt = stmt.where(StockLedgerEntryModel.product_id == product_id)
        if scope is not None:
            try:
                scope = StockScope(scope)
            except ValueError:
                raise ValidationError(f"Unknown stock scope {scope!r}", field="scope") from None
            stmt = stmt.where(StockLedgerEntryModel.scope == scope.value)
        if start is not None:
            stmt = stmt.where(StockLedgerEntryModel.created_at >= start)
        if end is not None:
            stmt = stmt.where(StockLedgerEntryModel.created_at <= end)
        stmt = stmt.order_by(
            StockLedgerEntryModel.created_at.desc(),
            StockLedgerEntryModel.stream_position.desc(),
            StockLedgerEntryModel.id.desc(),
        ).execution_options(yield_per=batch_size)

        for model in self.session.scalars(stmt):
            yield model.to_dto()
