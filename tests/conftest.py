"""
Pytest fixtures for the stock kernel test suite.

Provides:
- A session-scoped engine with all tables and immutability listeners
- Per-test sessions rolled back at teardown
- Product, coordinator and state machine factories
- Log capture as parsed JSON records

Environment Variables:
- DATABASE_URL: database to test against.  Defaults to in-memory SQLite;
  tests marked ``postgres`` run only when this points at PostgreSQL.
"""

import json
import logging
import os
import threading
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.db.base import Base
from stock_kernel.db.engine import build_engine, create_tables, drop_tables
from stock_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.ledger import EntryMetadata, StockScope, TransactionType
from stock_kernel.domain.principal import AuthenticatedPrincipal, StaticIdentityProvider
from stock_kernel.domain.transfer import TransferItemRequest, TransferStatus
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.selectors.transfer_selector import TransferQueryService
from stock_kernel.services.product_store import SqlFranchiseProductStore, SqlProductStore
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_coordinator import AtomicityMode, StockCoordinator
from stock_kernel.services.stock_ledger import StockLedger
from stock_kernel.services.transfer_state_machine import TransferStateMachine

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

DEFAULT_TEST_URL = "sqlite:///:memory:"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_TEST_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def pytest_collection_modifyitems(config, items):
    if get_database_url().startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.adjust_direct(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_adjusted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = build_engine(get_database_url(), pool_size=30, max_overflow=20, pool_timeout=10)
    yield eng
    eng.dispose()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables(db_engine)
    create_tables(db_engine)
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables(db_engine)


def _delete_all_rows(engine):
    """Remove committed rows left by tests that really commit."""
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(text(f"DELETE FROM {table.name}"))


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection;
    ``session.commit()`` only releases a savepoint, and everything is
    rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def committing_session_factory(db_engine, db_tables):
    """Session factory whose sessions really commit.

    Every session it hands out is closed at teardown and all rows are
    deleted afterwards.
    """
    factory = sessionmaker(bind=db_engine, expire_on_commit=False)
    created: list[Session] = []
    lock = threading.Lock()

    def tracked_factory() -> Session:
        with lock:
            s = factory()
            created.append(s)
            return s

    yield tracked_factory

    for s in created:
        if s.is_active:
            s.rollback()
        s.close()
    _delete_all_rows(db_engine)


# =============================================================================
# Actors, clock and identity
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def identity(test_actor_id):
    return StaticIdentityProvider(AuthenticatedPrincipal(id=test_actor_id, role="admin"))


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def product_store(session) -> SqlProductStore:
    return SqlProductStore(session)


@pytest.fixture
def franchise_store(session) -> SqlFranchiseProductStore:
    return SqlFranchiseProductStore(session)


@pytest.fixture
def stock_ledger(session, deterministic_clock) -> StockLedger:
    return StockLedger(session, deterministic_clock)


@pytest.fixture
def make_coordinator(session, stock_ledger, product_store, franchise_store, identity):
    """Build a coordinator, optionally with substitute stores or mode."""

    def _make(
        mode: AtomicityMode = AtomicityMode.TRANSACTIONAL,
        products=None,
        franchise_products=None,
    ) -> StockCoordinator:
        return StockCoordinator(
            session,
            stock_ledger,
            products or product_store,
            franchise_products or franchise_store,
            identity=identity,
            mode=mode,
        )

    return _make


@pytest.fixture
def coordinator(make_coordinator) -> StockCoordinator:
    return make_coordinator()


@pytest.fixture
def make_state_machine(session, product_store, franchise_store, deterministic_clock, identity):
    def _make(coordinator: StockCoordinator) -> TransferStateMachine:
        return TransferStateMachine(
            session,
            coordinator,
            product_store,
            franchise_store,
            clock=deterministic_clock,
            identity=identity,
            sequences=SequenceService(session),
        )

    return _make


@pytest.fixture
def state_machine(make_state_machine, coordinator) -> TransferStateMachine:
    return make_state_machine(coordinator)


@pytest.fixture
def transfer_queries(session) -> TransferQueryService:
    return TransferQueryService(session, default_page_size=10, max_page_size=100)


@pytest.fixture
def ledger_selector(session) -> LedgerSelector:
    return LedgerSelector(session)


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def create_central_product(product_store, coordinator, test_actor_id):
    """Factory: a central product with an opening ``initial_stock`` entry."""
    counter = iter(range(1, 1_000_000))

    def _create(
        stock: int = 100,
        cost_price: Decimal | None = Decimal("12.50"),
        sale_price: Decimal | None = Decimal("20.00"),
        min_stock: int = 0,
        name: str | None = None,
    ):
        n = next(counter)
        info = product_store.add_product(
            sku=f"SKU-{n:05d}-{uuid4().hex[:6]}",
            name=name or f"Product {n}",
            created_by=test_actor_id,
            cost_price=cost_price,
            sale_price=sale_price,
            min_stock=min_stock,
        )
        if stock:
            coordinator.adjust_direct(
                None, StockScope.CENTRAL, info.id, TransactionType.INITIAL_STOCK, stock,
                EntryMetadata(performed_by=test_actor_id),
            )
        return product_store.get_product(info.id)

    return _create


@pytest.fixture
def create_local_product(franchise_store, coordinator, test_actor_id):
    """Factory: a tenant mirror of a central product, optionally stocked."""

    def _create(
        tenant_id: UUID,
        central_product_id: UUID,
        stock: int = 0,
        min_stock: int = 0,
        name: str = "Local product",
    ):
        info = franchise_store.add_product(
            tenant_id, central_product_id, name, test_actor_id, min_stock=min_stock,
        )
        if stock:
            coordinator.adjust_direct(
                tenant_id, StockScope.LOCAL, info.id, TransactionType.INITIAL_STOCK, stock,
                EntryMetadata(performed_by=test_actor_id),
            )
        return franchise_store.get_product(tenant_id, info.id)

    return _create


@pytest.fixture
def product_pair(create_central_product, create_local_product, tenant_id):
    """Factory: (central, local) products linked for ``tenant_id``."""

    def _create(central_stock: int = 100, local_stock: int = 0, **kwargs):
        central = create_central_product(stock=central_stock, **kwargs)
        local = create_local_product(tenant_id, central.id, stock=local_stock)
        return central, local

    return _create


@pytest.fixture
def shipped_transfer(state_machine, transfer_queries, product_pair, tenant_id, test_actor_id):
    """Factory: a transfer walked to ``shipped`` for the given line quantities."""

    def _create(quantities=(10,), central_stock: int = 100):
        pairs = [product_pair(central_stock=central_stock) for _ in quantities]
        items = [
            TransferItemRequest(central.id, local.id, quantity)
            for (central, local), quantity in zip(pairs, quantities)
        ]
        transfer = state_machine.create(tenant_id, items, requested_by=test_actor_id)
        state_machine.approve(transfer.id, test_actor_id)
        state_machine.advance_status(transfer.id, TransferStatus.PROCESSING)
        state_machine.advance_status(transfer.id, TransferStatus.SHIPPED)
        return transfer_queries.get_transfer(transfer.id), pairs

    return _create


class FailingFranchiseStore:
    """Franchise store whose counter writes fail for chosen products."""

    def __init__(self, inner: SqlFranchiseProductStore, fail_on: set[UUID]):
        self._inner = inner
        self.fail_on = fail_on

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def set_stock(self, tenant_id, product_id, value, expected_version):
        if product_id in self.fail_on:
            raise RuntimeError(f"counter write failed for {product_id}")
        return self._inner.set_stock(tenant_id, product_id, value, expected_version)


@pytest.fixture
def failing_franchise_store(franchise_store):
    """Factory: wrap the franchise store so writes to ``fail_on`` raise."""

    def _make(*fail_on: UUID) -> FailingFranchiseStore:
        return FailingFranchiseStore(franchise_store, set(fail_on))

    return _make
