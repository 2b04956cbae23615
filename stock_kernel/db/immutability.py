"""
ORM-Level Immutability Enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here intercept those events for the
append-only tables and raise ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update] --> _reject_update() --> ImmutabilityViolationError
    [before_delete] --> _reject_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                    | When Immutable         | Why
--------------------------|------------------------|------------------------------
StockLedgerEntryModel     | ALWAYS (from creation) | Corrections are new entries
TransferStatusEventModel  | ALWAYS (from creation) | History is the audit trail
TransferItemModel         | ALWAYS (from creation) | Pairing and price are snapshots

Bulk ``update()`` / ``delete()`` statements bypass mapper events; the kernel
never issues them against these tables.
"""

from sqlalchemy import event

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _violation(target, operation: str, reason: str) -> ImmutabilityViolationError:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _reject_ledger_update(mapper, connection, target):
    raise _violation(
        target, "UPDATE",
        "Stock ledger entries are immutable; record a corrective entry instead",
    )


def _reject_ledger_delete(mapper, connection, target):
    raise _violation(target, "DELETE", "Stock ledger entries cannot be deleted")


def _reject_status_event_update(mapper, connection, target):
    raise _violation(target, "UPDATE", "Transfer status history is append-only")


def _reject_status_event_delete(mapper, connection, target):
    raise _violation(target, "DELETE", "Transfer status history is append-only")


def _reject_item_update(mapper, connection, target):
    raise _violation(
        target, "UPDATE",
        "Transfer items are fixed at creation (pairing and price snapshot)",
    )


def _reject_item_delete(mapper, connection, target):
    raise _violation(target, "DELETE", "Transfer items cannot be deleted")


def _listeners():
    from stock_kernel.models.stock_ledger import StockLedgerEntryModel
    from stock_kernel.models.transfer import TransferItemModel, TransferStatusEventModel

    return (
        (StockLedgerEntryModel, "before_update", _reject_ledger_update),
        (StockLedgerEntryModel, "before_delete", _reject_ledger_delete),
        (TransferStatusEventModel, "before_update", _reject_status_event_update),
        (TransferStatusEventModel, "before_delete", _reject_status_event_delete),
        (TransferItemModel, "before_update", _reject_item_update),
        (TransferItemModel, "before_delete", _reject_item_delete),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call during application start-up, after models are
    importable and before any session flushes.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that must seed deliberately broken rows.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
