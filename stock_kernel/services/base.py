"""
BaseService -- abstract base for kernel services that write.

Every concrete service receives a SQLAlchemy ``Session`` from its caller and
persists through ``session.flush()``.  Services never call
``session.commit()`` or ``session.rollback()``: the caller (the
TransferOrchestrator, a script, or a test harness) owns the unit of work.
Savepoints (``session.begin_nested()``) are allowed, because they roll back
only what the service itself did.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never commits or rolls back the caller's transaction.

    Non-goals:
        - Read-only queries belong in ``stock_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
