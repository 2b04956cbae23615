"""
Canonical workflow types (``stock_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for lifecycle state machines: Guard, Transition and
Workflow.  The transfer lifecycle in ``domain/transfer.py`` is declared
with these types so the transition table lives in one place.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_states`` are members of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only; the service that owns the transition evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``moves_stock=True`` marks the transition that calls the stock
    coordinator.  ``generic=True`` marks transitions reachable through
    the generic status-advance operation rather than a dedicated one.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    moves_stock: bool = False
    generic: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_states: tuple[str, ...]
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        for state in self.initial_states + self.terminal_states:
            if state not in known:
                raise ValueError(f"Workflow {self.name}: unknown state {state!r}")
        for t in self.transitions:
            if t.from_state not in known or t.to_state not in known:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} "
                    f"references unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    f"has an outgoing transition"
                )

    def find(self, from_state: str, to_state: str) -> Transition | None:
        """Return the transition for (from_state, to_state), or None."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def targets(self, from_state: str) -> frozenset[str]:
        return frozenset(
            t.to_state for t in self.transitions if t.from_state == from_state
        )
