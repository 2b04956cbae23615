"""
scripts/verify_ledger.py: exit status and output of the reconciliation CLI.
"""

import importlib.util
import json
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from stock_kernel.db.engine import build_engine, create_tables, reset_engine
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.ledger import EntryMetadata, StockScope, TransactionType
from stock_kernel.models.product import CentralProduct
from stock_kernel.services.product_store import SqlFranchiseProductStore, SqlProductStore
from stock_kernel.services.stock_coordinator import StockCoordinator
from stock_kernel.services.stock_ledger import StockLedger

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "verify_ledger.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("verify_ledger", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def seeded_db(tmp_path):
    """A file-backed SQLite database with one moved product pair."""
    url = f"sqlite:///{tmp_path / 'stock.db'}"
    engine = build_engine(url)
    create_tables(engine)
    actor, tenant = uuid4(), uuid4()

    with Session(engine) as session:
        products = SqlProductStore(session)
        franchise = SqlFranchiseProductStore(session)
        coordinator = StockCoordinator(
            session, StockLedger(session, DeterministicClock()), products, franchise,
        )
        central = products.add_product("SKU-1", "Widget", actor)
        local = franchise.add_product(tenant, central.id, "Widget", actor)
        coordinator.adjust_direct(
            None, StockScope.CENTRAL, central.id, TransactionType.INITIAL_STOCK, 10,
            EntryMetadata(performed_by=actor),
        )
        coordinator.move(tenant, central.id, local.id, 4, performed_by=actor)
        session.commit()

    yield url, engine, central.id
    reset_engine()
    engine.dispose()


class TestVerifyLedger:

    def test_consistent_database(self, seeded_db, capsys):
        url, _, _ = seeded_db

        code = _load_script().main(["--db-url", url, "--json", "--all"])

        payload = json.loads(capsys.readouterr().out)
        assert code == 0
        assert payload["checked"] == 2
        assert payload["failed"] == 0
        assert all(stream["is_consistent"] for stream in payload["streams"])

    def test_drifted_counter_fails(self, seeded_db, capsys):
        url, engine, central_id = seeded_db
        with engine.begin() as conn:
            conn.execute(
                update(CentralProduct).where(CentralProduct.id == central_id).values(stock=99)
            )

        code = _load_script().main(["--db-url", url])

        out = capsys.readouterr().out
        assert code == 1
        assert "1 inconsistent" in out
        assert "FAIL" in out
