"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers, and from them the
    human-readable transfer numbers (``TRF-YYMMDD-NNNN``).  Uses a dedicated
    counter table with row-level locking (``SELECT ... FOR UPDATE``) so
    concurrent transfer creation never hands out the same number.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by TransferStateMachine.create().

Invariants enforced:
    - Sequence monotonicity: the locked counter row is the sole source of
      truth for the next value.  Reading the highest existing transfer
      number and adding one is FORBIDDEN.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and re-read).
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.logging_config import get_logger
from stock_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        seq = SequenceService(session).next_value("transfer_number:240101")
    """

    TRANSFER_NUMBER = "transfer_number"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Locks the counter row (creating it on first use), increments it and
        returns the new value.  The counter stays locked until the caller's
        transaction ends.

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use. Another transaction may be creating the same row;
            # the savepoint keeps a lost race from poisoning the caller's work.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def next_transfer_number(
        self,
        at: datetime,
        prefix: str = "TRF",
        width: int = 4,
    ) -> str:
        """
        Allocate the next transfer number for the calendar day of ``at``.

        Each day has its own counter, so numbers restart at 1 daily and are
        strictly increasing within a day: ``TRF-240101-0001``,
        ``TRF-240101-0002``, ...
        """
        day = at.strftime("%y%m%d")
        value = self.next_value(f"{self.TRANSFER_NUMBER}:{day}")
        return f"{prefix}-{day}-{value:0{width}d}"
