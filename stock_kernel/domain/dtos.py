"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable data structures and status enums shared by the ledger:
    period info, stock positions, ledger movements, shortfalls, the caller
    context handed in by the authorization layer, and line inputs for
    deliveries, issues and transfers.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Services convert ORM
    rows into these DTOs before returning them; engines and orchestrators
    never hand ORM entities to callers.

Invariants enforced:
    - Every DTO is a frozen dataclass.
    - Quantities and costs are Decimal, never float.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.domain.values import ZERO, round_value


# ---------------------------------------------------------------------------
# Status enums
# ---------------------------------------------------------------------------


class PeriodStatus(str, Enum):
    """Period lifecycle: DRAFT -> OPEN -> PENDING_CLOSE -> CLOSED (linear)."""

    DRAFT = "DRAFT"
    OPEN = "OPEN"
    PENDING_CLOSE = "PENDING_CLOSE"
    CLOSED = "CLOSED"


class PeriodLocationStatus(str, Enum):
    """Per-location reconciliation state within a period."""

    OPEN = "OPEN"
    READY = "READY"
    CLOSED = "CLOSED"


class TransferStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class NCRType(str, Enum):
    MANUAL = "MANUAL"
    PRICE_VARIANCE = "PRICE_VARIANCE"


class NCRStatus(str, Enum):
    OPEN = "OPEN"
    SENT = "SENT"
    CREDITED = "CREDITED"
    REJECTED = "REJECTED"
    CLOSED = "CLOSED"


class Unit(str, Enum):
    """Unit of measure: mass, count, volume, box, case, pack."""

    KG = "KG"
    EA = "EA"
    LTR = "LTR"
    BOX = "BOX"
    CASE = "CASE"
    PACK = "PACK"


class LocationType(str, Enum):
    KITCHEN = "KITCHEN"
    STORE = "STORE"
    CENTRAL = "CENTRAL"
    WAREHOUSE = "WAREHOUSE"


class CostCentre(str, Enum):
    FOOD = "FOOD"
    CLEAN = "CLEAN"
    OTHER = "OTHER"


class MovementType(str, Enum):
    RECEIPT = "receipt"
    ISSUE = "issue"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"


# ---------------------------------------------------------------------------
# Caller context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActorContext:
    """
    Pre-validated caller identity supplied by the authorization layer.

    The kernel trusts this object; it does no authentication of its own.
    ``location_access`` of None means unrestricted (admin/supervisor).
    """

    user_id: UUID
    role: str = "OPERATOR"
    location_access: frozenset[UUID] | None = None


# ---------------------------------------------------------------------------
# Periods
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PeriodInfo:
    """Immutable snapshot of a period row."""

    id: UUID
    period_code: str
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus
    opened_at: datetime | None = None
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED

    @property
    def prices_locked(self) -> bool:
        return self.status != PeriodStatus.DRAFT

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date


@dataclass(frozen=True)
class PeriodLocationInfo:
    period_id: UUID
    location_id: UUID
    location_code: str
    status: PeriodLocationStatus
    ready_at: datetime | None = None
    opening_value: Decimal = ZERO
    closing_value: Decimal | None = None


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockPosition:
    """Current (on_hand, wac) of one ledger row."""

    period_id: UUID
    location_id: UUID
    item_id: UUID
    on_hand: Decimal
    wac: Decimal

    @property
    def value(self) -> Decimal:
        return round_value(self.on_hand * self.wac)


@dataclass(frozen=True)
class LedgerMovement:
    """
    Result of one stock ledger mutation.

    ``unit_cost`` is the cost the movement was valued at: the supplier
    price for a receipt, the source WAC for transfer in/out, the current
    WAC for an issue.
    """

    movement_type: MovementType
    location_id: UUID
    item_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    previous_qty: Decimal
    previous_wac: Decimal
    new_qty: Decimal
    new_wac: Decimal

    @property
    def value(self) -> Decimal:
        return round_value(self.quantity * self.unit_cost)


@dataclass(frozen=True)
class StockShortfall:
    """One line of an InsufficientStockError."""

    item_id: UUID
    item_code: str
    item_name: str
    unit: str
    requested: Decimal
    available: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.available


# ---------------------------------------------------------------------------
# Line inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeliveryLineInput:
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class StockLineInput:
    """Line of an issue or transfer: an item and the quantity to move."""

    item_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class StockRequest:
    """Aggregated quantity requested per item, used for availability checks."""

    item_id: UUID
    quantity: Decimal
    line_numbers: tuple[int, ...] = field(default_factory=tuple)
