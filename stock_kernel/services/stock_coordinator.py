"""
StockCoordinator -- the only component that mutates stock counters.

Responsibility:
    Applies stock changes as (ledger entry, versioned counter write) pairs:

    * ``move()`` -- central -> local transfer of one line.
    * ``reverse()`` -- undo a completed move with corrective entries.
    * ``adjust_direct()`` -- single-counter, non-transfer events
      (purchase, sale, damage, expiry, return, manual adjustment, opening
      balance).
    * ``ensure_central_available()`` -- read-only pre-check used before
      any line of a multi-line operation is mutated.

Architecture position:
    Kernel > Services.  Called by TransferStateMachine (deliver) and by
    service-layer callers (direct and bulk adjustments).

Invariants enforced:
    - Every counter write is preceded by a StockLedger.record() of the
      same change, in the same unit.
    - Check before write: insufficient stock raises before any ledger row
      or counter is touched.
    - Linearizable per counter: the ledger compare-and-set and the
      versioned counter UPDATE both reject a writer that read a stale value.
    - Per-item atomicity, in one of two modes:

      TRANSACTIONAL  both sides of a move run in one savepoint; any
                     failure rolls the whole item back.
      COMPENSATING   the central side is applied first as its own unit;
                     the local side only runs if that succeeded; if the
                     local side fails the central decrement is reversed
                     with a corrective ``adjustment`` entry and the
                     original error propagates.

Failure modes:
    - InsufficientStockError: counter does not cover the request.
    - ConcurrentModificationError: lost a compare-and-set.
    - ValidationError: bad quantity or transaction type.
    - ProductNotFoundError / LocalProductNotFoundError.
"""

from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from stock_kernel.domain.ledger import (
    TRANSFER_TYPES,
    EntryMetadata,
    LedgerEntryDraft,
    StockLedgerEntry,
    StockScope,
    TransactionType,
    normalize_quantity,
)
from stock_kernel.domain.principal import IdentityProvider
from stock_kernel.domain.stores import FranchiseProductStore, ProductStore, StockSnapshot
from stock_kernel.exceptions import InsufficientStockError, ValidationError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.stock_coordinator")


class AtomicityMode(str, Enum):
    """How a move keeps its two counters consistent."""

    TRANSACTIONAL = "transactional"
    COMPENSATING = "compensating"


@dataclass(frozen=True)
class MoveReceipt:
    """Proof of one completed central -> local move."""

    tenant_id: UUID
    central_product_id: UUID
    local_product_id: UUID
    quantity: int
    reference_id: str | None
    central_entry: StockLedgerEntry
    local_entry: StockLedgerEntry


def _require_positive_int(quantity: int, field: str = "quantity") -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(
            f"{field} must be a positive integer, got {quantity!r}", field=field,
        )


class StockCoordinator:
    """
    Single mutation path for central and franchise-local stock.

    Non-goals:
        - No retries.  A ConcurrentModificationError is returned to the
          caller, who decides whether to re-read and resubmit.
    """

    def __init__(
        self,
        session: Session,
        ledger: StockLedger,
        products: ProductStore,
        franchise_products: FranchiseProductStore,
        identity: IdentityProvider | None = None,
        mode: AtomicityMode = AtomicityMode.TRANSACTIONAL,
    ):
        self.session = session
        self._ledger = ledger
        self._products = products
        self._franchise_products = franchise_products
        self._identity = identity
        self.mode = AtomicityMode(mode)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _actor(self, performed_by: UUID | None) -> UUID:
        if performed_by is not None:
            return performed_by
        if self._identity is None:
            raise ValidationError("No acting principal for stock mutation", field="performed_by")
        return self._identity.current_principal().id

    def _read(
        self, scope: StockScope, product_id: UUID, tenant_id: UUID | None,
    ) -> StockSnapshot:
        if scope == StockScope.CENTRAL:
            return self._products.get_stock(product_id)
        return self._franchise_products.get_stock(tenant_id, product_id)

    def _write(
        self,
        scope: StockScope,
        product_id: UUID,
        tenant_id: UUID | None,
        value: int,
        expected_version: int,
    ) -> int:
        if scope == StockScope.CENTRAL:
            return self._products.set_stock(product_id, value, expected_version)
        return self._franchise_products.set_stock(
            tenant_id, product_id, value, expected_version,
        )

    def _apply(
        self,
        scope: StockScope,
        product_id: UUID,
        tenant_id: UUID | None,
        snapshot: StockSnapshot,
        transaction_type: TransactionType,
        quantity: int,
        performed_by: UUID,
        metadata: EntryMetadata,
    ) -> StockLedgerEntry:
        """Ledger entry then counter write, both against ``snapshot``."""
        entry = self._ledger.record(
            LedgerEntryDraft(
                scope=scope,
                product_id=product_id,
                tenant_id=tenant_id,
                transaction_type=transaction_type,
                quantity=quantity,
                previous_stock=snapshot.value,
                performed_by=performed_by,
                reference_id=metadata.reference_id,
                notes=metadata.notes,
                cost_per_unit=metadata.cost_per_unit,
                supplier=metadata.supplier,
                batch_number=metadata.batch_number,
                expiry_date=metadata.expiry_date,
            )
        )
        self._write(scope, product_id, tenant_id, entry.new_stock, snapshot.version)
        return entry

    # ------------------------------------------------------------------
    # Pre-checks
    # ------------------------------------------------------------------

    def ensure_central_available(
        self,
        tenant_id: UUID,
        lines: Iterable[tuple[UUID, int]],
    ) -> None:
        """
        Verify central stock covers every (central_product_id, quantity).

        Quantities of lines sharing a product are summed.  Raises
        InsufficientStockError for the first product, in line order, that
        is not covered.  Read-only.
        """
        required: OrderedDict[UUID, int] = OrderedDict()
        for product_id, quantity in lines:
            required[product_id] = required.get(product_id, 0) + quantity

        for product_id, quantity in required.items():
            available = self._products.get_stock(product_id).value
            if available < quantity:
                logger.warning(
                    "insufficient_stock",
                    extra={
                        "scope": "central",
                        "tenant_id": str(tenant_id),
                        "product_id": str(product_id),
                        "requested": quantity,
                        "available": available,
                    },
                )
                raise InsufficientStockError(
                    product_id, quantity, available, tenant_id=tenant_id, scope="central",
                )

    # ------------------------------------------------------------------
    # Move
    # ------------------------------------------------------------------

    def move(
        self,
        tenant_id: UUID,
        central_product_id: UUID,
        local_product_id: UUID,
        quantity: int,
        reference: str | None = None,
        performed_by: UUID | None = None,
    ) -> MoveReceipt:
        """
        Move ``quantity`` units from central stock to the tenant's mirror.

        Steps: read both counters; check central covers the quantity; write
        a central transfer_out entry and a local transfer_in entry; persist
        both counters.  Nothing is written if the check fails.

        Raises:
            InsufficientStockError, ConcurrentModificationError,
            ValidationError, ProductNotFoundError, LocalProductNotFoundError.
        """
        _require_positive_int(quantity)
        actor = self._actor(performed_by)

        with LogContext.bind(tenant_id=tenant_id, product_id=central_product_id):
            central = self._products.get_stock(central_product_id)
            local = self._franchise_products.get_stock(tenant_id, local_product_id)

            if central.value < quantity:
                logger.warning(
                    "insufficient_stock",
                    extra={
                        "scope": "central",
                        "requested": quantity,
                        "available": central.value,
                        "reference_id": reference,
                    },
                )
                raise InsufficientStockError(
                    central_product_id, quantity, central.value,
                    tenant_id=tenant_id, scope="central",
                )

            metadata = EntryMetadata(reference_id=reference)

            if self.mode == AtomicityMode.TRANSACTIONAL:
                with self.session.begin_nested():
                    central_entry = self._apply(
                        StockScope.CENTRAL, central_product_id, tenant_id, central,
                        TransactionType.TRANSFER_OUT, -quantity, actor, metadata,
                    )
                    local_entry = self._apply(
                        StockScope.LOCAL, local_product_id, tenant_id, local,
                        TransactionType.TRANSFER_IN, quantity, actor, metadata,
                    )
            else:
                central_entry, local_entry = self._move_compensating(
                    tenant_id, central_product_id, local_product_id,
                    quantity, central, local, actor, metadata,
                )

            logger.info(
                "stock_moved",
                extra={
                    "local_product_id": str(local_product_id),
                    "quantity": quantity,
                    "central_stock": central_entry.new_stock,
                    "local_stock": local_entry.new_stock,
                    "reference_id": reference,
                    "mode": self.mode.value,
                },
            )

        return MoveReceipt(
            tenant_id=tenant_id,
            central_product_id=central_product_id,
            local_product_id=local_product_id,
            quantity=quantity,
            reference_id=reference,
            central_entry=central_entry,
            local_entry=local_entry,
        )

    def _move_compensating(
        self,
        tenant_id: UUID,
        central_product_id: UUID,
        local_product_id: UUID,
        quantity: int,
        central: StockSnapshot,
        local: StockSnapshot,
        actor: UUID,
        metadata: EntryMetadata,
    ) -> tuple[StockLedgerEntry, StockLedgerEntry]:
        with self.session.begin_nested():
            central_entry = self._apply(
                StockScope.CENTRAL, central_product_id, tenant_id, central,
                TransactionType.TRANSFER_OUT, -quantity, actor, metadata,
            )

        try:
            with self.session.begin_nested():
                local_entry = self._apply(
                    StockScope.LOCAL, local_product_id, tenant_id, local,
                    TransactionType.TRANSFER_IN, quantity, actor, metadata,
                )
        except Exception as exc:
            self._restore_central(
                tenant_id, central_product_id, quantity, actor, metadata.reference_id, exc,
            )
            raise

        return central_entry, local_entry

    def _restore_central(
        self,
        tenant_id: UUID,
        central_product_id: UUID,
        quantity: int,
        actor: UUID,
        reference: str | None,
        cause: Exception,
    ) -> StockLedgerEntry:
        snapshot = self._products.get_stock(central_product_id)
        with self.session.begin_nested():
            entry = self._apply(
                StockScope.CENTRAL, central_product_id, tenant_id, snapshot,
                TransactionType.ADJUSTMENT, quantity, actor,
                EntryMetadata(
                    reference_id=reference,
                    notes=f"Compensating reversal of transfer_out: {type(cause).__name__}",
                ),
            )
        logger.warning(
            "stock_move_compensated",
            extra={
                "product_id": str(central_product_id),
                "quantity": quantity,
                "reference_id": reference,
                "cause": type(cause).__name__,
                "central_stock": entry.new_stock,
            },
        )
        return entry

    def reverse(
        self,
        receipt: MoveReceipt,
        performed_by: UUID | None = None,
        reason: str = "Move reversed",
    ) -> tuple[StockLedgerEntry, StockLedgerEntry]:
        """
        Undo a completed move with corrective ``adjustment`` entries.

        The local counter is reduced first, then central restored, each as
        its own unit.

        Raises:
            InsufficientStockError: the local units were already consumed.
        """
        actor = self._actor(performed_by)
        metadata = EntryMetadata(reference_id=receipt.reference_id, notes=reason)

        local = self._franchise_products.get_stock(receipt.tenant_id, receipt.local_product_id)
        if local.value < receipt.quantity:
            raise InsufficientStockError(
                receipt.local_product_id, receipt.quantity, local.value,
                tenant_id=receipt.tenant_id, scope="local",
            )
        with self.session.begin_nested():
            local_entry = self._apply(
                StockScope.LOCAL, receipt.local_product_id, receipt.tenant_id, local,
                TransactionType.ADJUSTMENT, -receipt.quantity, actor, metadata,
            )

        central = self._products.get_stock(receipt.central_product_id)
        with self.session.begin_nested():
            central_entry = self._apply(
                StockScope.CENTRAL, receipt.central_product_id, receipt.tenant_id, central,
                TransactionType.ADJUSTMENT, receipt.quantity, actor, metadata,
            )

        logger.warning(
            "stock_move_reversed",
            extra={
                "tenant_id": str(receipt.tenant_id),
                "product_id": str(receipt.central_product_id),
                "quantity": receipt.quantity,
                "reference_id": receipt.reference_id,
            },
        )
        return central_entry, local_entry

    # ------------------------------------------------------------------
    # Direct adjustments
    # ------------------------------------------------------------------

    def adjust_direct(
        self,
        tenant_id: UUID | None,
        scope: StockScope,
        product_id: UUID,
        transaction_type: TransactionType,
        quantity: int,
        metadata: EntryMetadata | None = None,
    ) -> StockLedgerEntry:
        """
        Apply a non-transfer stock event to one counter.

        The quantity sign follows the transaction type: sale, damage and
        expired always decrease stock; purchase, return and initial_stock
        always increase it; adjustment keeps the caller's sign.

        Raises:
            ValidationError: unknown scope or type, zero quantity, a transfer
                type, or a local scope without tenant.
            InsufficientStockError: a decrease larger than current stock.
            ConcurrentModificationError: lost a compare-and-set.
        """
        metadata = metadata or EntryMetadata()
        try:
            scope = StockScope(scope)
        except ValueError:
            raise ValidationError(f"Unknown stock scope {scope!r}", field="scope") from None
        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError:
            raise ValidationError(
                f"Unknown transaction type {transaction_type!r}", field="transaction_type",
            ) from None

        if transaction_type in TRANSFER_TYPES:
            raise ValidationError(
                f"{transaction_type.value} is reserved for transfers",
                field="transaction_type",
            )
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity == 0:
            raise ValidationError(
                f"quantity must be a non-zero integer, got {quantity!r}", field="quantity",
            )
        if scope == StockScope.LOCAL and tenant_id is None:
            raise ValidationError("Local adjustments require a tenant_id", field="tenant_id")

        signed = normalize_quantity(transaction_type, quantity)
        actor = self._actor(metadata.performed_by)

        with LogContext.bind(tenant_id=tenant_id, product_id=product_id):
            snapshot = self._read(scope, product_id, tenant_id)
            if snapshot.value + signed < 0:
                logger.warning(
                    "insufficient_stock",
                    extra={
                        "scope": scope.value,
                        "requested": -signed,
                        "available": snapshot.value,
                        "transaction_type": transaction_type.value,
                    },
                )
                raise InsufficientStockError(
                    product_id, -signed, snapshot.value,
                    tenant_id=tenant_id, scope=scope.value,
                )

            with self.session.begin_nested():
                entry = self._apply(
                    scope, product_id, tenant_id, snapshot,
                    transaction_type, signed, actor, metadata,
                )

            logger.info(
                "stock_adjusted",
                extra={
                    "scope": scope.value,
                    "transaction_type": transaction_type.value,
                    "quantity": signed,
                    "previous_stock": entry.previous_stock,
                    "new_stock": entry.new_stock,
                    "reference_id": metadata.reference_id,
                },
            )
        return entry
