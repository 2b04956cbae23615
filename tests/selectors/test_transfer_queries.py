"""
TransferQueryService: lookup, paginated listing and statistics.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.domain.transfer import TransferItemRequest, TransferStatus
from stock_kernel.exceptions import TransferNotFoundError, ValidationError

S = TransferStatus


@pytest.fixture
def make_transfers(state_machine, product_pair, tenant_id, test_actor_id, deterministic_clock):
    """Create ``count`` requested transfers one minute apart."""

    def _make(count: int, quantity: int = 1):
        central, local = product_pair(central_stock=1000)
        transfers = []
        for _ in range(count):
            transfers.append(
                state_machine.create(
                    tenant_id, [TransferItemRequest(central.id, local.id, quantity)],
                    requested_by=test_actor_id,
                )
            )
            deterministic_clock.advance(60)
        return transfers

    return _make


class TestLookup:

    def test_get_by_id_and_number(self, transfer_queries, make_transfers):
        [transfer] = make_transfers(1)

        found = transfer_queries.get_transfer(transfer.id)
        assert (found.id, found.transfer_number) == (transfer.id, transfer.transfer_number)
        assert transfer_queries.get_by_number(transfer.transfer_number).id == transfer.id

    def test_missing(self, transfer_queries):
        with pytest.raises(TransferNotFoundError):
            transfer_queries.get_transfer(uuid4())
        with pytest.raises(TransferNotFoundError):
            transfer_queries.get_by_number("TRF-000000-0000")


class TestListing:

    def test_default_is_newest_first(self, transfer_queries, make_transfers, tenant_id):
        transfers = make_transfers(3)

        page = transfer_queries.list_transfers(tenant_id)

        assert [t.id for t in page.items] == [t.id for t in reversed(transfers)]
        assert page.total == 3
        assert page.page_size == 10

    def test_pagination(self, transfer_queries, make_transfers, tenant_id):
        transfers = make_transfers(5)

        first = transfer_queries.list_transfers(
            tenant_id, page=1, page_size=2, sort_by="transfer_number", sort_order="asc",
        )
        last = transfer_queries.list_transfers(
            tenant_id, page=3, page_size=2, sort_by="transfer_number", sort_order="asc",
        )

        assert [t.id for t in first.items] == [transfers[0].id, transfers[1].id]
        assert [t.id for t in last.items] == [transfers[4].id]
        assert first.total_pages == 3
        assert first.has_next
        assert not last.has_next

    def test_page_values_are_clamped(self, transfer_queries, make_transfers, tenant_id):
        make_transfers(2)

        page = transfer_queries.list_transfers(tenant_id, page=0, page_size=10_000)

        assert page.page == 1
        assert page.page_size == 100
        assert len(page.items) == 2

    def test_unknown_sort_field_falls_back(self, transfer_queries, make_transfers, tenant_id,
                                           captured_logs):
        transfers = make_transfers(2)

        page = transfer_queries.list_transfers(tenant_id, sort_by="password")

        assert [t.id for t in page.items] == [transfers[1].id, transfers[0].id]
        assert any(r["message"] == "unknown_sort_field" for r in captured_logs())

    def test_filters(self, transfer_queries, make_transfers, state_machine, tenant_id,
                     test_actor_id):
        transfers = make_transfers(3)
        state_machine.reject(transfers[0].id, test_actor_id, "no")

        rejected = transfer_queries.list_transfers(tenant_id, status=S.REJECTED)
        other_tenant = transfer_queries.list_transfers(uuid4())

        assert [t.id for t in rejected.items] == [transfers[0].id]
        assert other_tenant.total == 0
        assert other_tenant.total_pages == 0

    def test_unknown_status_filter(self, transfer_queries):
        with pytest.raises(ValidationError) as exc_info:
            transfer_queries.list_transfers(None, status="lost")
        assert exc_info.value.field == "status"


class TestStats:

    def test_counts_and_delivered_totals(self, transfer_queries, make_transfers,
                                         shipped_transfer, state_machine, tenant_id):
        make_transfers(2)
        transfer, _ = shipped_transfer(quantities=(4,))
        state_machine.deliver(transfer.id, received_by=uuid4())

        stats = transfer_queries.transfer_stats(tenant_id)

        assert stats.by_status[S.REQUESTED] == 2
        assert stats.by_status[S.DELIVERED] == 1
        assert stats.by_status[S.CANCELLED] == 0
        assert stats.total_transfers == 3
        assert stats.delivered_units == 4
        assert stats.delivered_value == Decimal("50.00")

    def test_empty(self, transfer_queries):
        stats = transfer_queries.transfer_stats(uuid4())
        assert stats.total_transfers == 0
        assert stats.delivered_value == Decimal("0")
