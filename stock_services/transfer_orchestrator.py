"""
stock_services.transfer_orchestrator -- wiring and unit-of-work boundary.

Responsibility:
    ``StockServices`` creates every kernel service for one Session exactly
    once and wires them together.  ``TransferOrchestrator`` runs each public
    operation in its own transaction: open a session, build the services,
    call the kernel, commit (or roll back on error).

Architecture position:
    Services -- the only layer that reads ``stock_config`` and the only
    place that commits.  Kernel services flush and never commit.

Invariants enforced:
    - One transaction per operation; a failed operation leaves no partial
      writes, except in compensating mode where the corrective entries
      written before a delivery failure are committed with it.
    - Stock-moving operations (deliver, adjust) retry on
      ConcurrentModificationError up to ``concurrency.max_conflict_retries``,
      each attempt in a fresh transaction.

Usage:
    orchestrator = TransferOrchestrator.from_config()
    transfer = orchestrator.create_transfer(tenant_id, items, requested_by=user_id)
    orchestrator.approve(transfer.id, admin_id=admin_id)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from stock_config import StockConfiguration, get_active_config
from stock_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.ledger import EntryMetadata, StockLedgerEntry, StockScope, TransactionType
from stock_kernel.domain.principal import IdentityProvider
from stock_kernel.domain.stores import CentralProductInfo, LocalProductInfo
from stock_kernel.domain.transfer import Transfer, TransferItemRequest, TransferStatus
from stock_kernel.domain.values import Page
from stock_kernel.exceptions import StockKernelError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.selectors.ledger_selector import (
    LedgerSelector,
    LowStockItem,
    ReconciliationResult,
    TransactionTypeStats,
)
from stock_kernel.selectors.transfer_selector import TransferQueryService, TransferStats
from stock_kernel.services.product_store import SqlFranchiseProductStore, SqlProductStore
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_coordinator import AtomicityMode, StockCoordinator
from stock_kernel.services.stock_ledger import StockLedger
from stock_kernel.services.transfer_state_machine import TransferStateMachine
from stock_services.bulk_adjustment import (
    AdjustmentRequest,
    BulkAdjustmentResult,
    BulkAdjustmentService,
)
from stock_services.retry import retry_on_conflict

logger = get_logger("services.orchestrator")

T = TypeVar("T")


class StockServices:
    """Every kernel service bound to one Session.

    Non-goals:
        - Does NOT manage transaction boundaries.
    """

    def __init__(
        self,
        session: Session,
        config: StockConfiguration,
        clock: Clock | None = None,
        identity: IdentityProvider | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()

        self.products = SqlProductStore(session)
        self.franchise_products = SqlFranchiseProductStore(session)
        self.sequences = SequenceService(session)
        self.ledger = StockLedger(session, self.clock)
        self.coordinator = StockCoordinator(
            session,
            self.ledger,
            self.products,
            self.franchise_products,
            identity=identity,
            mode=config.transfers.atomicity,
        )
        self.transfers = TransferStateMachine(
            session,
            self.coordinator,
            self.products,
            self.franchise_products,
            clock=self.clock,
            identity=identity,
            sequences=self.sequences,
            number_prefix=config.transfers.number_prefix,
            number_width=config.transfers.number_width,
        )
        self.bulk = BulkAdjustmentService(session, self.coordinator)

        self.transfer_queries = TransferQueryService(
            session,
            default_page_size=config.transfers.default_page_size,
            max_page_size=config.transfers.max_page_size,
        )
        self.ledger_queries = LedgerSelector(session)


class TransferOrchestrator:
    """Transaction-per-operation facade over the stock kernel."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: StockConfiguration,
        clock: Clock | None = None,
        identity: IdentityProvider | None = None,
    ):
        self._session_factory = session_factory
        self.config = config
        self._clock = clock or SystemClock()
        self._identity = identity

    @classmethod
    def from_config(
        cls,
        config: StockConfiguration | None = None,
        clock: Clock | None = None,
        identity: IdentityProvider | None = None,
        create_schema: bool = False,
    ) -> TransferOrchestrator:
        """Initialise the engine from configuration and return an orchestrator."""
        config = config or get_active_config()
        engine = init_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
        )
        if create_schema:
            create_tables(engine)
        register_immutability_listeners()
        return cls(get_session_factory(), config, clock=clock, identity=identity)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        fn: Callable[[StockServices], T],
        retry: bool = False,
        keep_compensations: bool = False,
    ) -> T:
        def attempt() -> T:
            with session_scope(self._session_factory) as session:
                services = StockServices(session, self.config, self._clock, self._identity)
                try:
                    return fn(services)
                except StockKernelError:
                    if keep_compensations and services.coordinator.mode == AtomicityMode.COMPENSATING:
                        session.commit()
                    raise

        with LogContext.bind(correlation_id=uuid4()):
            logger.debug("operation_started", extra={"operation": operation})
            if not retry:
                return attempt()
            return retry_on_conflict(
                attempt,
                max_attempts=self.config.concurrency.max_conflict_retries,
                backoff=self.config.concurrency.retry_backoff_seconds,
            )

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def add_central_product(
        self,
        sku: str,
        name: str,
        created_by: UUID,
        cost_price: Decimal | None = None,
        sale_price: Decimal | None = None,
        min_stock: int | None = None,
        opening_stock: int = 0,
    ) -> CentralProductInfo:
        """Register a catalog product; a positive ``opening_stock`` is
        recorded as its ``initial_stock`` entry."""
        if min_stock is None:
            min_stock = self.config.inventory.default_min_stock

        def op(s: StockServices) -> CentralProductInfo:
            info = s.products.add_product(
                sku, name, created_by,
                cost_price=cost_price, sale_price=sale_price, min_stock=min_stock,
            )
            if opening_stock:
                s.coordinator.adjust_direct(
                    None, StockScope.CENTRAL, info.id, TransactionType.INITIAL_STOCK,
                    opening_stock, EntryMetadata(performed_by=created_by, cost_per_unit=cost_price),
                )
                info = s.products.get_product(info.id)
            return info

        return self._run("add_central_product", op)

    def add_franchise_product(
        self,
        tenant_id: UUID,
        central_product_id: UUID,
        name: str,
        created_by: UUID,
        selling_price: Decimal | None = None,
        min_stock: int | None = None,
    ) -> LocalProductInfo:
        if min_stock is None:
            min_stock = self.config.inventory.default_min_stock
        return self._run(
            "add_franchise_product",
            lambda s: s.franchise_products.add_product(
                tenant_id, central_product_id, name, created_by,
                selling_price=selling_price, min_stock=min_stock,
            ),
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def create_transfer(
        self,
        tenant_id: UUID,
        items: Sequence[TransferItemRequest],
        requested_by: UUID,
        entry_status: TransferStatus = TransferStatus.REQUESTED,
        notes: str | None = None,
    ) -> Transfer:
        return self._run(
            "create_transfer",
            lambda s: s.transfers.create(
                tenant_id, items, requested_by, entry_status=entry_status, notes=notes,
            ),
        )

    def approve(self, transfer_id: UUID, admin_id: UUID, notes: str | None = None) -> Transfer:
        return self._run("approve", lambda s: s.transfers.approve(transfer_id, admin_id, notes))

    def reject(self, transfer_id: UUID, admin_id: UUID, reason: str) -> Transfer:
        return self._run("reject", lambda s: s.transfers.reject(transfer_id, admin_id, reason))

    def advance_status(
        self,
        transfer_id: UUID,
        target: TransferStatus,
        notes: str | None = None,
        changed_by: UUID | None = None,
    ) -> Transfer:
        return self._run(
            "advance_status",
            lambda s: s.transfers.advance_status(transfer_id, target, notes, changed_by),
        )

    def deliver(self, transfer_id: UUID, received_by: UUID, notes: str | None = None) -> Transfer:
        return self._run(
            "deliver",
            lambda s: s.transfers.deliver(transfer_id, received_by, notes),
            retry=True,
            keep_compensations=True,
        )

    def add_note(self, transfer_id: UUID, text: str, author_id: UUID | None = None) -> Transfer:
        return self._run(
            "add_note", lambda s: s.transfers.add_note(transfer_id, text, author_id), retry=True,
        )

    # ------------------------------------------------------------------
    # Stock
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
        return self._run(
            "adjust_direct",
            lambda s: s.coordinator.adjust_direct(
                tenant_id, scope, product_id, transaction_type, quantity, metadata,
            ),
            retry=True,
        )

    def bulk_adjust(self, requests: Sequence[AdjustmentRequest]) -> BulkAdjustmentResult:
        return self._run("bulk_adjust", lambda s: s.bulk.apply(requests))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_transfer(self, transfer_id: UUID) -> Transfer:
        return self._run("get_transfer", lambda s: s.transfer_queries.get_transfer(transfer_id))

    def list_transfers(
        self,
        tenant_id: UUID | None = None,
        status: TransferStatus | None = None,
        page: int = 1,
        page_size: int | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Page[Transfer]:
        return self._run(
            "list_transfers",
            lambda s: s.transfer_queries.list_transfers(
                tenant_id, status, page, page_size, sort_by, sort_order,
            ),
        )

    def transfer_stats(self, tenant_id: UUID | None = None) -> TransferStats:
        return self._run("transfer_stats", lambda s: s.transfer_queries.transfer_stats(tenant_id))

    def history(
        self,
        tenant_id: UUID | None,
        product_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[StockLedgerEntry]:
        """Newest-first ledger entries, materialised before the session closes."""
        def op(s: StockServices) -> list[StockLedgerEntry]:
            entries = []
            for entry in s.ledger.history(tenant_id, product_id, start, end):
                if limit is not None and len(entries) >= limit:
                    break
                entries.append(entry)
            return entries

        return self._run("history", op)

    def transaction_stats(
        self,
        tenant_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[TransactionTypeStats]:
        return self._run(
            "transaction_stats",
            lambda s: s.ledger_queries.transaction_stats(tenant_id, start, end),
        )

    def low_stock(self, tenant_id: UUID) -> list[LowStockItem]:
        return self._run(
            "low_stock",
            lambda s: s.ledger_queries.low_stock(
                tenant_id, limit=self.config.inventory.low_stock_limit,
            ),
        )

    def reconcile_all(self) -> list[ReconciliationResult]:
        return self._run("reconcile_all", lambda s: list(s.ledger_queries.reconcile_all()))
