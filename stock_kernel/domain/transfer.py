"""
Transfer domain types (``stock_kernel.domain.transfer``).

Responsibility
--------------
Pure value objects for the franchise transfer aggregate: the status
lifecycle, the transition table, and immutable DTOs for transfers, their
line items and their status history.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import
only from ``domain/workflow``.

Invariants enforced
-------------------
* ``TRANSFER_TRANSITIONS`` defines the only valid status transitions.
  Terminal states have no outgoing edges.
* A ``Transfer`` DTO always has at least one item, and its ``status``
  equals the status of its last history event.
* ``TransferItemRequest.quantity`` is a positive integer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.domain.workflow import Guard, Transition, Workflow


class TransferStatus(str, Enum):
    """Transfer lifecycle states."""

    REQUESTED = "requested"
    PENDING = "pending"
    REJECTED = "rejected"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_TRANSFER_STATUSES: frozenset[TransferStatus] = frozenset({
    TransferStatus.REJECTED,
    TransferStatus.DELIVERED,
    TransferStatus.CANCELLED,
})

ENTRY_STATUSES: frozenset[TransferStatus] = frozenset({
    TransferStatus.REQUESTED,
    TransferStatus.PENDING,
})


TRANSFER_WORKFLOW = Workflow(
    name="franchise_transfer",
    description="Central-to-franchise stock transfer with admin approval",
    initial_states=(TransferStatus.REQUESTED, TransferStatus.PENDING),
    states=tuple(TransferStatus),
    transitions=(
        Transition(
            TransferStatus.REQUESTED,
            TransferStatus.PENDING,
            action="approve",
            guard=Guard(
                "central_stock_covers_lines",
                "Central stock still covers every line quantity",
            ),
        ),
        Transition(TransferStatus.REQUESTED, TransferStatus.REJECTED, action="reject"),
        Transition(
            TransferStatus.PENDING, TransferStatus.PROCESSING,
            action="start_processing", generic=True,
        ),
        Transition(
            TransferStatus.PENDING, TransferStatus.CANCELLED,
            action="cancel", generic=True,
        ),
        Transition(
            TransferStatus.PROCESSING, TransferStatus.SHIPPED,
            action="ship", generic=True,
        ),
        Transition(
            TransferStatus.PROCESSING, TransferStatus.CANCELLED,
            action="cancel", generic=True,
        ),
        Transition(
            TransferStatus.SHIPPED,
            TransferStatus.DELIVERED,
            action="deliver",
            guard=Guard(
                "central_stock_covers_lines",
                "Central stock covers every line before any line moves",
            ),
            moves_stock=True,
        ),
    ),
    terminal_states=tuple(TERMINAL_TRANSFER_STATUSES),
)


TRANSFER_TRANSITIONS: dict[TransferStatus, frozenset[TransferStatus]] = {
    status: frozenset(
        TransferStatus(target) for target in TRANSFER_WORKFLOW.targets(status)
    )
    for status in TransferStatus
}


def is_transition_allowed(source: TransferStatus, target: TransferStatus) -> bool:
    """True if (source, target) is an edge of the transfer lifecycle."""
    return target in TRANSFER_TRANSITIONS[source]


def is_generic_transition(source: TransferStatus, target: TransferStatus) -> bool:
    """True if the edge may be taken through the generic status-advance path."""
    transition = TRANSFER_WORKFLOW.find(source, target)
    return transition is not None and transition.generic


# =========================================================================
# Value objects
# =========================================================================


@dataclass(frozen=True)
class TransferItemRequest:
    """One requested line of a new transfer."""

    central_product_id: UUID
    local_product_id: UUID
    quantity: int


@dataclass(frozen=True)
class TransferItem:
    """One persisted transfer line with its price snapshot."""

    id: UUID
    central_product_id: UUID
    local_product_id: UUID
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class StatusEvent:
    """One entry of a transfer's status history."""

    position: int
    status: TransferStatus
    notes: str | None
    changed_by: UUID
    occurred_at: datetime


@dataclass(frozen=True)
class Transfer:
    """Immutable snapshot of a transfer aggregate."""

    id: UUID
    tenant_id: UUID
    transfer_number: str
    status: TransferStatus
    items: tuple[TransferItem, ...]
    status_history: tuple[StatusEvent, ...]
    requested_by: UUID
    created_at: datetime
    updated_at: datetime
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    delivered_by: UUID | None = None
    delivered_at: datetime | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if not self.items:
            raise ValueError(f"Transfer {self.transfer_number} has no items")
        if self.status_history and self.status_history[-1].status != self.status:
            raise ValueError(
                f"Transfer {self.transfer_number} status {self.status.value} "
                f"does not match last history event "
                f"{self.status_history[-1].status.value}"
            )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRANSFER_STATUSES

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_value(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))
