"""
Kernel Invariants Contract.

These invariants are structural law for stock movement. No configuration
value, atomicity mode, or caller policy may switch them off.

This module only declares the invariants. Enforcement is distributed across
StockLedger, StockCoordinator, TransferStateMachine, SequenceService and the
ORM immutability listeners.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Each value names one guarantee that the kernel provides unconditionally.
    Configuration may influence *how* a mutation is applied (transactional
    or compensating), never *whether* these rules apply.
    """

    LEDGER_CONTINUITY = "ledger_continuity"
    """Every ledger entry satisfies new_stock = previous_stock + quantity,
    and its previous_stock equals the new_stock of the entry before it in
    the same stream. Enforced by StockLedger.record."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """No stock counter and no ledger new_stock is ever below zero.
    Enforced by StockCoordinator pre-checks, StockLedger.record and DB
    check constraints."""

    SINGLE_MUTATION_PATH = "single_mutation_path"
    """Stock counters change only through StockCoordinator, and every
    change writes a ledger entry. Enforced by
    tests/architecture/test_kernel_boundary.py."""

    COMPARE_AND_SET = "compare_and_set"
    """Two writers that read the same counter version cannot both
    succeed. Enforced by versioned counter updates and the unique
    (stream_key, stream_position) ledger constraint."""

    TRANSITION_CLOSURE = "transition_closure"
    """A transfer changes status only along TRANSFER_TRANSITIONS, and its
    status always equals the status of its last status event. Enforced by
    TransferStateMachine with a status compare-and-set."""

    IMMUTABILITY = "immutability"
    """Ledger entries, transfer items and status events are append-only.
    Enforced by ORM listeners (stock_kernel.db.immutability)."""

    SEQUENCE_MONOTONICITY = "sequence_monotonicity"
    """Transfer numbers are unique and strictly increasing within a day.
    Enforced by SequenceService with a locked counter row."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "stock_services",
    "stock_config",
    "scripts",
)
