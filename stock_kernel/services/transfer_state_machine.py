"""
TransferStateMachine -- lifecycle owner of the transfer aggregate.

Responsibility:
    Creates transfers, validates and applies status transitions, and calls
    StockCoordinator at the single point where stock moves: delivery.

Architecture position:
    Kernel > Services.  Depends on StockCoordinator (deliver, stock
    pre-checks), the product stores (creation-time validation and price
    snapshot), SequenceService (transfer numbers), a Clock and an
    IdentityProvider.

Invariants enforced:
    - Only edges of TRANSFER_TRANSITIONS are taken.  approve(), reject()
      and deliver() own their edges; advance_status() only takes the
      generic ones.  Anything else raises InvalidTransitionError.
    - Status writes are compare-and-set on the stored status: a transition
      applies only if the row still holds the expected source status.
    - Every status write appends a status event carrying the new status,
      so status always equals the last history entry.
    - Referential pairing of each line is checked once, at creation.
    - deliver() pre-checks central stock for every line before any line is
      moved, and a failure on any line leaves all counters and the status
      unchanged.  A second deliver() raises InvalidTransitionError.

Failure modes:
    - ValidationError, TransferNotFoundError, ProductNotFoundError,
      LocalProductNotFoundError, ReferentialMismatchError,
      InvalidTransitionError, InsufficientStockError,
      ConcurrentModificationError.
"""

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import Text, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.principal import IdentityProvider
from stock_kernel.domain.stores import FranchiseProductStore, ProductStore
from stock_kernel.domain.transfer import (
    ENTRY_STATUSES,
    TERMINAL_TRANSFER_STATUSES,
    TRANSFER_WORKFLOW,
    Transfer,
    TransferItemRequest,
    TransferStatus,
    is_generic_transition,
    is_transition_allowed,
)
from stock_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    LocalProductNotFoundError,
    ReferentialMismatchError,
    TransferNotFoundError,
    ValidationError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.transfer import (
    TransferItemModel,
    TransferModel,
    TransferStatusEventModel,
)
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_coordinator import (
    AtomicityMode,
    MoveReceipt,
    StockCoordinator,
)

logger = get_logger("services.transfer_state_machine")

DEFAULT_NOTES = {
    TransferStatus.REQUESTED: "Transfer request created by franchise",
    TransferStatus.PENDING: "Transfer request approved",
    TransferStatus.PROCESSING: "Transfer is being processed",
    TransferStatus.SHIPPED: "Transfer shipped",
    TransferStatus.CANCELLED: "Transfer cancelled",
    TransferStatus.DELIVERED: "Transfer received by franchise",
}
ADMIN_CREATED_NOTE = "Transfer created by admin"


def _appended_notes(text: str):
    """SQL expression appending ``text`` to the stored notes, newline separated."""
    existing = func.nullif(TransferModel.notes, "", type_=Text)
    return func.coalesce(existing + "\n", "") + text


class TransferStateMachine(BaseService[TransferModel]):
    """
    Transfer aggregate lifecycle.

    Usage:
        machine = TransferStateMachine(session, coordinator, products,
                                       franchise_products, clock=clock)
        transfer = machine.create(tenant_id, items, requested_by=actor_id)
        machine.approve(transfer.id, admin_id)
        machine.advance_status(transfer.id, TransferStatus.PROCESSING)
        machine.advance_status(transfer.id, TransferStatus.SHIPPED)
        machine.deliver(transfer.id, received_by=actor_id)
    """

    def __init__(
        self,
        session: Session,
        coordinator: StockCoordinator,
        products: ProductStore,
        franchise_products: FranchiseProductStore,
        clock: Clock | None = None,
        identity: IdentityProvider | None = None,
        sequences: SequenceService | None = None,
        number_prefix: str = "TRF",
        number_width: int = 4,
    ):
        super().__init__(session)
        self._coordinator = coordinator
        self._products = products
        self._franchise_products = franchise_products
        self._clock = clock or SystemClock()
        self._identity = identity
        self._sequences = sequences or SequenceService(session)
        self._number_prefix = number_prefix
        self._number_width = number_width

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _actor(self, explicit: UUID | None) -> UUID:
        if explicit is not None:
            return explicit
        if self._identity is None:
            raise ValidationError("No acting principal available", field="changed_by")
        return self._identity.current_principal().id

    def _load(self, transfer_id: UUID) -> TransferModel:
        model = self.session.get(TransferModel, transfer_id, populate_existing=True)
        if model is None:
            raise TransferNotFoundError(transfer_id)
        return model

    def _reject_transition(
        self,
        model: TransferModel,
        target: TransferStatus,
        reason: str,
    ) -> InvalidTransitionError:
        logger.warning(
            "transition_rejected",
            extra={
                "transfer_number": model.transfer_number,
                "from_status": model.status,
                "to_status": target.value,
                "reason": reason,
            },
        )
        return InvalidTransitionError(model.id, model.status, target.value, reason)

    def _require_edge(self, model: TransferModel, target: TransferStatus) -> TransferStatus:
        current = TransferStatus(model.status)
        if current in TERMINAL_TRANSFER_STATUSES:
            raise self._reject_transition(
                model, target, f"transfer is already {current.value}",
            )
        if not is_transition_allowed(current, target):
            raise self._reject_transition(model, target, "transition not allowed")
        return current

    def _append_event(
        self,
        model: TransferModel,
        status: TransferStatus,
        notes: str | None,
        changed_by: UUID,
        at: datetime,
    ) -> None:
        model.status_events.append(
            TransferStatusEventModel(
                position=len(model.status_events) + 1,
                status=status.value,
                notes=notes,
                changed_by=changed_by,
                occurred_at=at,
            )
        )
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConcurrentModificationError(
                "TransferHistory", str(model.id),
                expected=len(model.status_events), actual="taken",
            ) from exc

    def _compare_and_set_status(
        self,
        model: TransferModel,
        expected: TransferStatus,
        target: TransferStatus,
        changed_by: UUID,
        notes: str | None,
        at: datetime | None = None,
        **fields,
    ) -> None:
        """
        Write ``target`` only if the row still holds ``expected``, then
        append the matching status event.  Runs in one savepoint.

        ``at`` stamps updated_at and the event; pass the same instant used
        for any decision timestamp in ``fields``.
        """
        now = at or self._clock.now()
        with self.session.begin_nested():
            result = self.session.execute(
                update(TransferModel)
                .where(
                    TransferModel.id == model.id,
                    TransferModel.status == expected.value,
                )
                .values(status=target.value, updated_at=now, **fields)
                .execution_options(synchronize_session=False)
            )
            self.session.expire(model)
            if result.rowcount != 1:
                raise self._reject_transition(
                    model, target,
                    f"status changed concurrently (expected {expected.value})",
                )
            self._append_event(model, target, notes, changed_by, now)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        tenant_id: UUID,
        items: Sequence[TransferItemRequest],
        requested_by: UUID,
        entry_status: TransferStatus = TransferStatus.REQUESTED,
        notes: str | None = None,
    ) -> Transfer:
        """
        Create a transfer in ``requested`` (franchise) or ``pending`` (admin).

        Every line is validated before anything is written: positive integer
        quantity, existing central and local products, local product owned by
        the tenant and mirroring the same central product.  Unit prices are
        snapshotted from the central product.

        Raises:
            ValidationError, ProductNotFoundError, LocalProductNotFoundError,
            ReferentialMismatchError.
        """
        try:
            entry_status = TransferStatus(entry_status)
        except ValueError:
            raise ValidationError(
                f"Unknown entry status {entry_status!r}", field="entry_status",
            ) from None
        if entry_status not in ENTRY_STATUSES:
            raise ValidationError(
                f"Transfers start as requested or pending, not {entry_status.value}",
                field="entry_status",
            )
        if not items:
            raise ValidationError("Transfer must contain at least one item", field="items")

        priced = []
        for index, item in enumerate(items):
            quantity = item.quantity
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise ValidationError(
                    f"Item {index + 1}: quantity must be a positive integer, "
                    f"got {quantity!r}",
                    field=f"items[{index}].quantity",
                )
            central = self._products.get_product(item.central_product_id)
            local = self._franchise_products.find_product(item.local_product_id)
            if local is None:
                raise LocalProductNotFoundError(item.local_product_id, tenant_id)
            if local.tenant_id != tenant_id:
                raise ReferentialMismatchError(
                    tenant_id, local.id, central.id,
                    "local product belongs to another tenant",
                )
            if local.central_product_id != central.id:
                raise ReferentialMismatchError(
                    tenant_id, local.id, central.id,
                    "local product mirrors a different central product",
                )
            priced.append((item, central.transfer_price))

        now = self._clock.now()
        number = self._sequences.next_transfer_number(
            now, prefix=self._number_prefix, width=self._number_width,
        )
        first_note = notes or (
            DEFAULT_NOTES[TransferStatus.REQUESTED]
            if entry_status == TransferStatus.REQUESTED
            else ADMIN_CREATED_NOTE
        )

        model = TransferModel(
            tenant_id=tenant_id,
            transfer_number=number,
            status=entry_status.value,
            requested_by=requested_by,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        for line_no, (item, unit_price) in enumerate(priced, start=1):
            model.items.append(
                TransferItemModel(
                    line_no=line_no,
                    central_product_id=item.central_product_id,
                    local_product_id=item.local_product_id,
                    quantity=item.quantity,
                    unit_price=unit_price,
                )
            )
        model.status_events.append(
            TransferStatusEventModel(
                position=1,
                status=entry_status.value,
                notes=first_note,
                changed_by=requested_by,
                occurred_at=now,
            )
        )
        self.session.add(model)
        self.session.flush()

        dto = model.to_dto()
        logger.info(
            "transfer_created",
            extra={
                "transfer_id": str(dto.id),
                "transfer_number": number,
                "tenant_id": str(tenant_id),
                "status": entry_status.value,
                "line_count": len(dto.items),
                "total_quantity": dto.total_quantity,
                "total_value": dto.total_value,
            },
        )
        return dto

    # ------------------------------------------------------------------
    # Admin decisions
    # ------------------------------------------------------------------

    def approve(
        self,
        transfer_id: UUID,
        admin_id: UUID,
        notes: str | None = None,
    ) -> Transfer:
        """
        requested -> pending, after re-checking central stock for every line.

        Raises:
            InvalidTransitionError: not in ``requested``.
            InsufficientStockError: names the first uncovered line.
        """
        model = self._load(transfer_id)
        with LogContext.bind(transfer_id=transfer_id, tenant_id=model.tenant_id):
            current = TransferStatus(model.status)
            if current != TransferStatus.REQUESTED:
                raise self._reject_transition(
                    model, TransferStatus.PENDING, "only requested transfers can be approved",
                )
            self._coordinator.ensure_central_available(
                model.tenant_id,
                [(item.central_product_id, item.quantity) for item in model.items],
            )
            now = self._clock.now()
            self._compare_and_set_status(
                model, current, TransferStatus.PENDING, admin_id,
                notes or DEFAULT_NOTES[TransferStatus.PENDING],
                at=now,
                approved_by=admin_id,
                approved_at=now,
            )
            logger.info(
                "transfer_approved",
                extra={"transfer_number": model.transfer_number, "admin_id": str(admin_id)},
            )
        return self._load(transfer_id).to_dto()

    def reject(self, transfer_id: UUID, admin_id: UUID, reason: str) -> Transfer:
        """
        requested -> rejected.  ``reason`` is mandatory.

        Raises:
            ValidationError: blank reason.
            InvalidTransitionError: not in ``requested``.
        """
        if reason is None or not reason.strip():
            raise ValidationError("Rejection reason is required", field="reason")
        reason = reason.strip()

        model = self._load(transfer_id)
        with LogContext.bind(transfer_id=transfer_id, tenant_id=model.tenant_id):
            current = TransferStatus(model.status)
            if current != TransferStatus.REQUESTED:
                raise self._reject_transition(
                    model, TransferStatus.REJECTED, "only requested transfers can be rejected",
                )
            now = self._clock.now()
            self._compare_and_set_status(
                model, current, TransferStatus.REJECTED, admin_id,
                f"Rejected: {reason}",
                at=now,
                rejected_by=admin_id,
                rejected_at=now,
                rejection_reason=reason,
            )
            logger.info(
                "transfer_rejected",
                extra={"transfer_number": model.transfer_number, "reason": reason},
            )
        return self._load(transfer_id).to_dto()

    # ------------------------------------------------------------------
    # Generic progress
    # ------------------------------------------------------------------

    def advance_status(
        self,
        transfer_id: UUID,
        target: TransferStatus,
        notes: str | None = None,
        changed_by: UUID | None = None,
    ) -> Transfer:
        """
        Take one of the generic edges: pending -> processing,
        processing -> shipped, or pending/processing -> cancelled.

        Raises:
            InvalidTransitionError: any other (source, target) pair,
                including every attempt to reach ``delivered``.
        """
        model = self._load(transfer_id)
        try:
            target = TransferStatus(target)
        except ValueError:
            raise self._reject_transition_raw(model, str(target)) from None

        with LogContext.bind(transfer_id=transfer_id, tenant_id=model.tenant_id):
            current = self._require_edge(model, target)
            if not is_generic_transition(current, target):
                action = TRANSFER_WORKFLOW.find(current, target).action
                raise self._reject_transition(
                    model, target, f"use {action}() for this transition",
                )
            actor = self._actor(changed_by)
            self._compare_and_set_status(
                model, current, target, actor, notes or DEFAULT_NOTES[target],
            )
            logger.info(
                "transfer_status_advanced",
                extra={
                    "transfer_number": model.transfer_number,
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )
        return self._load(transfer_id).to_dto()

    def _reject_transition_raw(self, model: TransferModel, target: str) -> InvalidTransitionError:
        logger.warning(
            "transition_rejected",
            extra={
                "transfer_number": model.transfer_number,
                "from_status": model.status,
                "to_status": target,
                "reason": "unknown status",
            },
        )
        return InvalidTransitionError(model.id, model.status, target, "unknown status")

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver(
        self,
        transfer_id: UUID,
        received_by: UUID,
        notes: str | None = None,
    ) -> Transfer:
        """
        shipped -> delivered, moving every line from central to local stock.

        All lines are pre-checked before any is moved.  In transactional
        mode the status write and every move share one savepoint.  In
        compensating mode each move is its own unit and completed lines are
        reversed if a later line, or the final status write, fails.

        Raises:
            InvalidTransitionError: not in ``shipped`` (including a second
                delivery of the same transfer).
            InsufficientStockError, ConcurrentModificationError.
        """
        model = self._load(transfer_id)
        with LogContext.bind(transfer_id=transfer_id, tenant_id=model.tenant_id):
            current = TransferStatus(model.status)
            if current == TransferStatus.DELIVERED:
                raise self._reject_transition(
                    model, TransferStatus.DELIVERED, "transfer was already delivered",
                )
            if current != TransferStatus.SHIPPED:
                raise self._reject_transition(
                    model, TransferStatus.DELIVERED, "only shipped transfers can be received",
                )

            tenant_id = model.tenant_id
            reference = model.transfer_number
            lines = [
                (item.central_product_id, item.local_product_id, item.quantity)
                for item in model.items
            ]

            self._coordinator.ensure_central_available(
                tenant_id, [(central_id, quantity) for central_id, _, quantity in lines],
            )

            now = self._clock.now()
            status_fields = {"delivered_by": received_by, "delivered_at": now}
            event_note = notes or DEFAULT_NOTES[TransferStatus.DELIVERED]

            if self._coordinator.mode == AtomicityMode.TRANSACTIONAL:
                with self.session.begin_nested():
                    self._compare_and_set_status(
                        model, current, TransferStatus.DELIVERED, received_by,
                        event_note, at=now, **status_fields,
                    )
                    for central_id, local_id, quantity in lines:
                        self._coordinator.move(
                            tenant_id, central_id, local_id, quantity,
                            reference=reference, performed_by=received_by,
                        )
            else:
                receipts: list[MoveReceipt] = []
                try:
                    for central_id, local_id, quantity in lines:
                        receipts.append(
                            self._coordinator.move(
                                tenant_id, central_id, local_id, quantity,
                                reference=reference, performed_by=received_by,
                            )
                        )
                    self._compare_and_set_status(
                        model, current, TransferStatus.DELIVERED, received_by,
                        event_note, at=now, **status_fields,
                    )
                except Exception:
                    for receipt in reversed(receipts):
                        self._coordinator.reverse(
                            receipt, performed_by=received_by,
                            reason=f"Delivery of {reference} failed; line reversed",
                        )
                    raise

            logger.info(
                "transfer_delivered",
                extra={
                    "transfer_number": reference,
                    "received_by": str(received_by),
                    "line_count": len(lines),
                    "total_quantity": sum(quantity for _, _, quantity in lines),
                },
            )
        return self._load(transfer_id).to_dto()

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def add_note(
        self,
        transfer_id: UUID,
        text: str,
        author_id: UUID | None = None,
    ) -> Transfer:
        """
        Append a free-text history event without changing status.

        Allowed in every state, terminal ones included.  The text is also
        appended (newline separated) to the transfer's notes.
        """
        if text is None or not text.strip():
            raise ValidationError("Note text is required", field="text")
        text = text.strip()

        model = self._load(transfer_id)
        author = self._actor(author_id)
        current = TransferStatus(model.status)
        now = self._clock.now()

        with LogContext.bind(transfer_id=transfer_id, tenant_id=model.tenant_id):
            with self.session.begin_nested():
                result = self.session.execute(
                    update(TransferModel)
                    .where(
                        TransferModel.id == model.id,
                        TransferModel.status == current.value,
                    )
                    .values(notes=_appended_notes(text), updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                self.session.expire(model)
                if result.rowcount != 1:
                    raise ConcurrentModificationError(
                        "Transfer", str(transfer_id),
                        expected=current.value, actual=model.status,
                    )
                self._append_event(model, current, text, author, now)
            logger.info(
                "transfer_note_added",
                extra={"transfer_number": model.transfer_number, "status": current.value},
            )
        return self._load(transfer_id).to_dto()
