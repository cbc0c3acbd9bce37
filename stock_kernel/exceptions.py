"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Insufficient stock and closed periods are everyday business conditions in a
kitchen or store, not crashes.  The layer above the kernel has to turn them
into clear messages ("only 90 KG of Flour left at Main Kitchen"), so every
error here is:

  1. A TYPED class (catch by type, never by message text)
  2. Carrying a CODE class attribute (machine-readable, API-safe)
  3. Carrying its context as ATTRIBUTES (item, requested, available, ...)

Example:
    try:
        issues.post_issue(ctx, location_id, "FOOD", today, lines)
    except InsufficientStockError as e:
        for s in e.shortfalls:
            warn(f"{s.item_name}: requested {s.requested}, have {s.available}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- ValidationError
    |   +-- SameLocationTransferError
    |   +-- DuplicateInvoiceError
    |
    +-- MasterDataError
    |   +-- EntityNotFoundError
    |   +-- InactiveEntityError
    |   +-- DuplicateCodeError
    |
    +-- PeriodError
    |   +-- PeriodClosedError
    |   +-- PeriodNotFoundError
    |   +-- PeriodAlreadyOpenError
    |   +-- PeriodAlreadyClosedError
    |   +-- PeriodOverlapError
    |   +-- PeriodImmutableError
    |   +-- InvalidPeriodTransitionError
    |
    +-- PriceBookError
    |   +-- PriceLockedError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |
    +-- TransferError
    |   +-- InvalidTransferTransitionError
    |   +-- SelfApprovalError
    |
    +-- NCRError
    |   +-- InvalidNCRTransitionError
    |
    +-- CloseError
    |   +-- NotAllLocationsReadyError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | Typical HTTP | When Raised
----------------|-----------------------------|--------------|---------------------------------
Validation      | VALIDATION_ERROR            | 400          | Non-positive qty, missing field
                | SAME_LOCATION_TRANSFER      | 400          | Transfer source == destination
                | DUPLICATE_INVOICE           | 409          | Supplier invoice already posted
----------------|-----------------------------|--------------|---------------------------------
Master data     | ENTITY_NOT_FOUND            | 404          | Unknown item/location/document
                | INACTIVE_ENTITY             | 422          | Item or location deactivated
                | DUPLICATE_CODE              | 409          | Code already in use
----------------|-----------------------------|--------------|---------------------------------
Period          | PERIOD_CLOSED               | 422          | Posting to a non-OPEN period
                | PERIOD_NOT_FOUND            | 422          | No period covers the date
                | PERIOD_ALREADY_OPEN         | 409          | Another period is already open
                | PERIOD_ALREADY_CLOSED       | 409          | Closing a CLOSED period
                | PERIOD_OVERLAP              | 409          | Date ranges collide
                | PERIOD_IMMUTABLE            | 422          | Modifying a CLOSED period
                | INVALID_PERIOD_TRANSITION   | 422          | e.g. DRAFT -> CLOSED
----------------|-----------------------------|--------------|---------------------------------
Price book      | PRICE_LOCKED                | 422          | Price change after DRAFT
----------------|-----------------------------|--------------|---------------------------------
Stock           | INSUFFICIENT_STOCK          | 409          | Issue/transfer-out > on_hand
----------------|-----------------------------|--------------|---------------------------------
Transfer        | INVALID_TRANSFER_TRANSITION | 422          | Approving a REJECTED transfer
                | SELF_APPROVAL               | 403          | Approver == requester
----------------|-----------------------------|--------------|---------------------------------
NCR             | INVALID_NCR_TRANSITION      | 422          | e.g. CREDITED -> OPEN
----------------|-----------------------------|--------------|---------------------------------
Close           | NOT_ALL_LOCATIONS_READY     | 422          | Close before reconciliation
----------------|-----------------------------|--------------|---------------------------------
Concurrency     | CONCURRENCY_CONFLICT        | 409          | Lock timeout, deadlock (retry)
----------------|-----------------------------|--------------|---------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | 500          | Editing a posted document

===============================================================================
RETRY POLICY
===============================================================================

Only ConcurrencyConflictError with ``retryable=True`` may be retried, and
only by re-running the whole orchestrator call (every call is atomic, so a
failed attempt leaves no partial state).  Everything else is permanent for
the request as submitted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from stock_kernel.domain.dtos import StockShortfall


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Validation


class ValidationError(StockKernelError):
    """Caller input is malformed. Never retried automatically."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, value: object = None):
        self.field = field
        self.value = value
        super().__init__(message)


class SameLocationTransferError(ValidationError):
    """Transfer source and destination are the same location."""

    code: str = "SAME_LOCATION_TRANSFER"

    def __init__(self, location_id: str):
        self.location_id = location_id
        super().__init__(
            f"Cannot transfer stock from location {location_id} to itself",
            field="to_location_id",
            value=location_id,
        )


class DuplicateInvoiceError(ValidationError):
    """The supplier invoice has already been posted as a delivery."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, supplier_id: str, invoice_ref: str):
        self.supplier_id = supplier_id
        self.invoice_ref = invoice_ref
        super().__init__(
            f"Invoice {invoice_ref} from supplier {supplier_id} was already delivered",
            field="invoice_ref",
            value=invoice_ref,
        )


# Master data


class MasterDataError(StockKernelError):
    """Base exception for item/location/supplier lookups."""

    code: str = "MASTER_DATA_ERROR"


class EntityNotFoundError(MasterDataError):
    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class InactiveEntityError(MasterDataError):
    code: str = "INACTIVE_ENTITY"

    def __init__(self, entity_type: str, entity_id: str, entity_code: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.entity_code = entity_code
        super().__init__(f"{entity_type} {entity_code} is inactive")


class DuplicateCodeError(MasterDataError):
    code: str = "DUPLICATE_CODE"

    def __init__(self, entity_type: str, entity_code: str):
        self.entity_type = entity_type
        self.entity_code = entity_code
        super().__init__(f"{entity_type} code already exists: {entity_code}")


# Period-related exceptions


class PeriodError(StockKernelError):
    """Base exception for period-related errors."""

    code: str = "PERIOD_ERROR"


class PeriodClosedError(PeriodError):
    """Attempted to post stock movements into a period that is not OPEN."""

    code: str = "PERIOD_CLOSED"

    def __init__(self, period_code: str, status: str, effective_date: str):
        self.period_code = period_code
        self.status = status
        self.effective_date = effective_date
        super().__init__(
            f"Cannot post to period {period_code} with status {status} "
            f"(date: {effective_date})"
        )


class PeriodNotFoundError(PeriodError):
    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, effective_date: str):
        self.effective_date = effective_date
        super().__init__(f"No period found for date: {effective_date}")


class PeriodAlreadyOpenError(PeriodError):
    """Only one period may be OPEN (or PENDING_CLOSE) at a time."""

    code: str = "PERIOD_ALREADY_OPEN"

    def __init__(self, period_code: str, open_period_code: str):
        self.period_code = period_code
        self.open_period_code = open_period_code
        super().__init__(
            f"Cannot open period {period_code}: period {open_period_code} is still open"
        )


class PeriodAlreadyClosedError(PeriodError):
    code: str = "PERIOD_ALREADY_CLOSED"

    def __init__(self, period_code: str):
        self.period_code = period_code
        super().__init__(f"Period {period_code} is already closed")


class PeriodOverlapError(PeriodError):
    code: str = "PERIOD_OVERLAP"

    def __init__(
        self,
        new_period_code: str,
        existing_period_code: str,
        overlap_start: str,
        overlap_end: str,
    ):
        self.new_period_code = new_period_code
        self.existing_period_code = existing_period_code
        self.overlap_start = overlap_start
        self.overlap_end = overlap_end
        super().__init__(
            f"Period {new_period_code} overlaps with {existing_period_code} "
            f"({overlap_start} to {overlap_end})"
        )


class PeriodImmutableError(PeriodError):
    """Attempted to modify a closed period."""

    code: str = "PERIOD_IMMUTABLE"

    def __init__(self, period_code: str, operation: str):
        self.period_code = period_code
        self.operation = operation
        super().__init__(
            f"Cannot {operation} closed period {period_code}: "
            "closed periods are immutable"
        )


class InvalidPeriodTransitionError(PeriodError):
    """Period lifecycle is linear: DRAFT -> OPEN -> PENDING_CLOSE -> CLOSED."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(self, period_code: str, from_status: str, to_status: str):
        self.period_code = period_code
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Period {period_code} cannot move from {from_status} to {to_status}"
        )


# Price book


class PriceBookError(StockKernelError):
    code: str = "PRICE_BOOK_ERROR"


class PriceLockedError(PriceBookError):
    """Prices are editable only while the owning period is DRAFT."""

    code: str = "PRICE_LOCKED"

    def __init__(self, item_id: str, period_code: str, period_status: str):
        self.item_id = item_id
        self.period_code = period_code
        self.period_status = period_status
        super().__init__(
            f"Prices for period {period_code} are locked (status {period_status}); "
            f"cannot change price of item {item_id}"
        )


# Stock


class StockError(StockKernelError):
    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """
    One or more lines request more than the location has on hand.

    ``shortfalls`` lists every offending item so the caller can show
    requested vs available quantities in one message.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        location_id: str,
        location_code: str,
        shortfalls: Iterable[StockShortfall],
    ):
        self.location_id = location_id
        self.location_code = location_code
        self.shortfalls = tuple(shortfalls)
        details = ", ".join(
            f"{s.item_code} (requested {s.requested}, available {s.available})"
            for s in self.shortfalls
        )
        super().__init__(f"Insufficient stock at {location_code}: {details}")

    @property
    def item_ids(self) -> tuple[str, ...]:
        return tuple(str(s.item_id) for s in self.shortfalls)


# Transfers


class TransferError(StockKernelError):
    code: str = "TRANSFER_ERROR"


class InvalidTransferTransitionError(TransferError):
    code: str = "INVALID_TRANSFER_TRANSITION"

    def __init__(self, transfer_no: str, from_status: str, action: str):
        self.transfer_no = transfer_no
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} transfer {transfer_no} in status {from_status}"
        )


class SelfApprovalError(TransferError):
    code: str = "SELF_APPROVAL"

    def __init__(self, transfer_no: str, actor_id: str):
        self.transfer_no = transfer_no
        self.actor_id = actor_id
        super().__init__(
            f"Transfer {transfer_no} cannot be approved by its requester {actor_id}"
        )


# NCR


class NCRError(StockKernelError):
    code: str = "NCR_ERROR"


class InvalidNCRTransitionError(NCRError):
    code: str = "INVALID_NCR_TRANSITION"

    def __init__(self, ncr_no: str, from_status: str, to_status: str):
        self.ncr_no = ncr_no
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"NCR {ncr_no} cannot move from {from_status} to {to_status}")


# Period close


class CloseError(StockKernelError):
    code: str = "CLOSE_ERROR"


class NotAllLocationsReadyError(CloseError):
    """Close attempted while some locations have not finished reconciliation."""

    code: str = "NOT_ALL_LOCATIONS_READY"

    def __init__(self, period_code: str, pending_locations: Iterable[str]):
        self.period_code = period_code
        self.pending_locations = tuple(pending_locations)
        super().__init__(
            f"Period {period_code} cannot close; locations not ready: "
            f"{', '.join(self.pending_locations)}"
        )


# Concurrency


class ConcurrencyError(StockKernelError):
    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    Lock timeout, deadlock or serialization failure.

    The whole orchestrator call is safe to retry from scratch.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, reason: str, retryable: bool = True):
        self.operation = operation
        self.reason = reason
        self.retryable = retryable
        super().__init__(f"Concurrency conflict during {operation}: {reason}")


# Immutability


class ImmutabilityError(StockKernelError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Posted documents, snapshots and closed periods cannot be changed."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
