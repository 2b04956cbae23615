"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (an API layer, a batch job, a script) must decide what
to do with a failure without parsing message text:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)
  4. Every exception says whether a retry can succeed (``retryable``)

Example:
    try:
        machine.deliver(transfer_id, received_by=actor_id)
    except ConcurrentModificationError as e:
        # another writer won the compare-and-set; re-read and resubmit
        ...
    except InsufficientStockError as e:
        api_response(code=e.code, product=e.product_id, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- TransferNotFoundError
    |   +-- ProductNotFoundError
    |   +-- LocalProductNotFoundError
    |
    +-- InvalidTransitionError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- NegativeStockError
    |
    +-- ReferentialMismatchError
    |
    +-- ConcurrentModificationError   (retryable)
    |
    +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES
===============================================================================

Code                      | Exception                      | Typical HTTP
--------------------------|--------------------------------|-------------
VALIDATION_ERROR          | ValidationError                | 400
NOT_FOUND                 | NotFoundError                  | 404
TRANSFER_NOT_FOUND        | TransferNotFoundError          | 404
PRODUCT_NOT_FOUND         | ProductNotFoundError           | 404
LOCAL_PRODUCT_NOT_FOUND   | LocalProductNotFoundError      | 404
INVALID_TRANSITION        | InvalidTransitionError         | 409
INSUFFICIENT_STOCK        | InsufficientStockError         | 409
NEGATIVE_STOCK            | NegativeStockError             | 409
REFERENTIAL_MISMATCH      | ReferentialMismatchError       | 400
CONCURRENT_MODIFICATION   | ConcurrentModificationError    | 409 (retry)
IMMUTABILITY_VIOLATION    | ImmutabilityViolationError     | 500
CONFIGURATION_ERROR       | ConfigurationError             | 500
"""

from uuid import UUID


class StockKernelError(Exception):
    """Base exception for all stock kernel errors."""

    code: str = "STOCK_KERNEL_ERROR"
    retryable: bool = False


# Input validation


class ValidationError(StockKernelError):
    """Malformed input: bad quantities, empty reason, empty item list."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# Lookups


class NotFoundError(StockKernelError):
    """A referenced record does not exist."""

    code: str = "NOT_FOUND"


class TransferNotFoundError(NotFoundError):
    """The transfer does not exist."""

    code: str = "TRANSFER_NOT_FOUND"

    def __init__(self, transfer_id: UUID | str):
        self.transfer_id = str(transfer_id)
        super().__init__(f"Transfer not found: {transfer_id}")


class ProductNotFoundError(NotFoundError):
    """The central catalog product does not exist."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: UUID | str):
        self.product_id = str(product_id)
        super().__init__(f"Central product not found: {product_id}")


class LocalProductNotFoundError(NotFoundError):
    """The franchise-local product record does not exist."""

    code: str = "LOCAL_PRODUCT_NOT_FOUND"

    def __init__(self, product_id: UUID | str, tenant_id: UUID | str | None = None):
        self.product_id = str(product_id)
        self.tenant_id = str(tenant_id) if tenant_id is not None else None
        super().__init__(f"Local product not found: {product_id}")


# Workflow


class InvalidTransitionError(StockKernelError):
    """The requested transition is not allowed from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        transfer_id: UUID | str,
        current_status: str,
        target_status: str,
        reason: str | None = None,
    ):
        self.transfer_id = str(transfer_id)
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        message = (
            f"Transfer {transfer_id} cannot move from "
            f"'{current_status}' to '{target_status}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Stock


class StockError(StockKernelError):
    """Base exception for stock counter errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Available stock does not cover the requested quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: UUID | str,
        requested: int,
        available: int,
        tenant_id: UUID | str | None = None,
        scope: str = "central",
    ):
        self.tenant_id = str(tenant_id) if tenant_id is not None else None
        self.product_id = str(product_id)
        self.requested = requested
        self.available = available
        self.scope = scope
        super().__init__(
            f"Insufficient {scope} stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class NegativeStockError(StockError):
    """A ledger entry would leave its counter below zero."""

    code: str = "NEGATIVE_STOCK"

    def __init__(self, stream_key: str, previous_stock: int, quantity: int):
        self.stream_key = stream_key
        self.previous_stock = previous_stock
        self.quantity = quantity
        super().__init__(
            f"Stock for {stream_key} would become negative: "
            f"{previous_stock} + ({quantity}) < 0"
        )


class ReferentialMismatchError(StockKernelError):
    """A local product does not belong to the tenant or pair with the central product."""

    code: str = "REFERENTIAL_MISMATCH"

    def __init__(
        self,
        tenant_id: UUID | str,
        local_product_id: UUID | str,
        central_product_id: UUID | str,
        reason: str,
    ):
        self.tenant_id = str(tenant_id)
        self.local_product_id = str(local_product_id)
        self.central_product_id = str(central_product_id)
        self.reason = reason
        super().__init__(
            f"Local product {local_product_id} cannot be paired with central "
            f"product {central_product_id} for tenant {tenant_id}: {reason}"
        )


# Concurrency


class ConcurrentModificationError(StockKernelError):
    """
    A compare-and-set write lost to a concurrent writer.

    The caller should re-read current state and resubmit.
    """

    code: str = "CONCURRENT_MODIFICATION"
    retryable: bool = True

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected: int | str | None = None,
        actual: int | str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            f"expected {expected}, found {actual}"
        )


# Persistence guards


class ImmutabilityViolationError(StockKernelError):
    """
    Attempted to modify or delete an immutable record.

    Ledger entries, transfer status events and transfer items are
    append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class ConfigurationError(StockKernelError):
    """Configuration file or value is invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)
