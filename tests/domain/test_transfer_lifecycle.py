"""
Transfer lifecycle table.

The transition table is the single source of truth for which status
changes exist.  These tests pin its exact shape and check the derived
helpers against it.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from stock_kernel.domain.transfer import (
    TERMINAL_TRANSFER_STATUSES,
    TRANSFER_TRANSITIONS,
    TRANSFER_WORKFLOW,
    StatusEvent,
    Transfer,
    TransferItem,
    TransferStatus,
    is_generic_transition,
    is_transition_allowed,
)
from stock_kernel.domain.workflow import Transition, Workflow

S = TransferStatus

EXPECTED_EDGES = {
    (S.REQUESTED, S.PENDING),
    (S.REQUESTED, S.REJECTED),
    (S.PENDING, S.PROCESSING),
    (S.PENDING, S.CANCELLED),
    (S.PROCESSING, S.SHIPPED),
    (S.PROCESSING, S.CANCELLED),
    (S.SHIPPED, S.DELIVERED),
}

statuses = st.sampled_from(list(TransferStatus))


class TestTransitionTable:

    def test_table_has_exactly_the_lifecycle_edges(self):
        edges = {
            (source, target)
            for source, targets in TRANSFER_TRANSITIONS.items()
            for target in targets
        }
        assert edges == EXPECTED_EDGES

    def test_every_status_has_an_entry(self):
        assert set(TRANSFER_TRANSITIONS) == set(TransferStatus)

    def test_terminal_statuses_have_no_outgoing_edges(self):
        for status in TERMINAL_TRANSFER_STATUSES:
            assert TRANSFER_TRANSITIONS[status] == frozenset()

    def test_terminal_set(self):
        assert TERMINAL_TRANSFER_STATUSES == {S.REJECTED, S.DELIVERED, S.CANCELLED}

    @given(source=statuses, target=statuses)
    def test_is_transition_allowed_matches_table(self, source, target):
        assert is_transition_allowed(source, target) == ((source, target) in EXPECTED_EDGES)

    @given(source=statuses, target=statuses)
    def test_generic_edges_are_a_subset_of_allowed(self, source, target):
        if is_generic_transition(source, target):
            assert is_transition_allowed(source, target)

    def test_dedicated_edges_are_not_generic(self):
        assert not is_generic_transition(S.REQUESTED, S.PENDING)
        assert not is_generic_transition(S.REQUESTED, S.REJECTED)
        assert not is_generic_transition(S.SHIPPED, S.DELIVERED)

    def test_only_delivery_moves_stock(self):
        moving = [t for t in TRANSFER_WORKFLOW.transitions if t.moves_stock]
        assert [(t.from_state, t.to_state) for t in moving] == [(S.SHIPPED, S.DELIVERED)]


class TestWorkflowValidation:

    def test_unknown_state_rejected(self):
        with pytest.raises(ValueError, match="unknown state"):
            Workflow(
                name="w", description="", initial_states=("a",), states=("a", "b"),
                transitions=(Transition("a", "c", action="go"),),
            )

    def test_terminal_state_with_outgoing_edge_rejected(self):
        with pytest.raises(ValueError, match="terminal state"):
            Workflow(
                name="w", description="", initial_states=("a",), states=("a", "b"),
                transitions=(Transition("b", "a", action="reopen"),),
                terminal_states=("b",),
            )

    def test_find_and_targets(self):
        assert TRANSFER_WORKFLOW.find(S.SHIPPED, S.DELIVERED).action == "deliver"
        assert TRANSFER_WORKFLOW.find(S.DELIVERED, S.SHIPPED) is None
        assert TRANSFER_WORKFLOW.targets(S.PENDING) == {S.PROCESSING, S.CANCELLED}


def _event(position, status):
    return StatusEvent(
        position=position, status=status, notes=None, changed_by=uuid4(),
        occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def _item(quantity, price):
    return TransferItem(
        id=uuid4(), central_product_id=uuid4(), local_product_id=uuid4(),
        quantity=quantity, unit_price=Decimal(price),
    )


class TestTransferDTO:

    def _transfer(self, items, status=S.REQUESTED, history=None):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return Transfer(
            id=uuid4(), tenant_id=uuid4(), transfer_number="TRF-240101-0001",
            status=status, items=tuple(items),
            status_history=tuple(history if history is not None else [_event(1, status)]),
            requested_by=uuid4(), created_at=now, updated_at=now,
        )

    def test_totals(self):
        transfer = self._transfer([_item(3, "2.50"), _item(2, "10")])
        assert transfer.total_quantity == 5
        assert transfer.total_value == Decimal("27.50")
        assert not transfer.is_terminal

    def test_empty_items_rejected(self):
        with pytest.raises(ValueError, match="no items"):
            self._transfer([])

    def test_status_must_match_last_history_event(self):
        with pytest.raises(ValueError, match="does not match"):
            self._transfer(
                [_item(1, "1")], status=S.PENDING,
                history=[_event(1, S.REQUESTED)],
            )
