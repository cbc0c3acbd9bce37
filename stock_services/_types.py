"""
stock_services._types -- Result DTOs returned by the orchestrators.

Responsibility:
    Frozen dataclasses handed back to callers (API layer, reports, tests)
    after a delivery, issue, transfer, close, NCR or reconciliation
    operation.  Callers never receive ORM entities.

Architecture position:
    Services -- these types live beside the orchestrators that produce them.
    They depend only on stock_kernel.domain.

Invariants enforced:
    - All DTOs are frozen; collections are tuples.
    - Amounts are Decimal.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from stock_kernel.domain.dtos import (
    CostCentre,
    NCRStatus,
    NCRType,
    PeriodInfo,
    TransferStatus,
)
from stock_kernel.domain.values import ZERO


# ---------------------------------------------------------------------------
# NCR
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NCRInfo:
    id: UUID
    ncr_no: str
    ncr_type: NCRType
    status: NCRStatus
    period_id: UUID
    location_id: UUID
    value: Decimal
    reason: str
    auto_generated: bool
    delivery_id: UUID | None = None
    delivery_line_id: UUID | None = None
    item_id: UUID | None = None
    quantity: Decimal | None = None
    expected_price: Decimal | None = None
    actual_price: Decimal | None = None
    variance_percent: Decimal | None = None
    resolution: str | None = None
    resolution_notes: str | None = None
    sent_at: datetime | None = None
    resolved_at: datetime | None = None


@dataclass(frozen=True)
class NCRSummary:
    """NCR values of one location in one period, bucketed by outcome."""

    credited_value: Decimal = ZERO
    credited_count: int = 0
    losses_value: Decimal = ZERO
    losses_count: int = 0
    pending_value: Decimal = ZERO
    pending_count: int = 0
    open_value: Decimal = ZERO
    open_count: int = 0

    @property
    def total_count(self) -> int:
        return self.credited_count + self.losses_count + self.pending_count + self.open_count


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeliveryLineInfo:
    id: UUID
    line_no: int
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal
    line_value: Decimal
    period_price: Decimal | None
    price_variance: Decimal | None
    wac_before: Decimal
    wac_after: Decimal


@dataclass(frozen=True)
class DeliveryInfo:
    id: UUID
    delivery_no: str
    period_id: UUID
    location_id: UUID
    supplier_id: UUID
    invoice_ref: str
    delivery_date: date
    total_amount: Decimal
    has_variance: bool
    lines: tuple[DeliveryLineInfo, ...] = ()


@dataclass(frozen=True)
class DeliveryResult:
    delivery: DeliveryInfo
    ncrs: tuple[NCRInfo, ...] = ()

    @property
    def ncr_count(self) -> int:
        return len(self.ncrs)


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IssueLineInfo:
    id: UUID
    line_no: int
    item_id: UUID
    quantity: Decimal
    wac_at_issue: Decimal
    line_value: Decimal


@dataclass(frozen=True)
class IssueInfo:
    id: UUID
    issue_no: str
    period_id: UUID
    location_id: UUID
    cost_centre: CostCentre
    issue_date: date
    total_value: Decimal
    lines: tuple[IssueLineInfo, ...] = ()


@dataclass(frozen=True)
class IssueResult:
    issue: IssueInfo


# ---------------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransferLineInfo:
    id: UUID
    line_no: int
    item_id: UUID
    quantity: Decimal
    # Set when the transfer completes
    unit_cost: Decimal | None = None
    line_value: Decimal | None = None


@dataclass(frozen=True)
class TransferInfo:
    id: UUID
    transfer_no: str
    period_id: UUID
    from_location_id: UUID
    to_location_id: UUID
    transfer_date: date
    status: TransferStatus
    requested_by_id: UUID
    approved_by_id: UUID | None = None
    approved_at: datetime | None = None
    rejected_by_id: UUID | None = None
    rejection_reason: str | None = None
    total_value: Decimal | None = None
    lines: tuple[TransferLineInfo, ...] = ()


# ---------------------------------------------------------------------------
# Period close
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CloseResult:
    """Outcome of a period close, including the rolled-forward period if any."""

    period: PeriodInfo
    snapshot_count: int
    # location code -> closing stock value
    closing_values: dict[str, Decimal] = field(default_factory=dict)
    next_period: PeriodInfo | None = None
    carried_forward_count: int = 0

    @property
    def total_value(self) -> Decimal:
        return sum(self.closing_values.values(), ZERO)


@dataclass(frozen=True)
class OpenResult:
    period: PeriodInfo
    carried_forward_count: int
    # location code -> opening stock value
    opening_values: dict[str, Decimal] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconciliationInfo:
    period_id: UUID
    location_id: UUID
    opening_stock: Decimal
    receipts: Decimal
    transfers_in: Decimal
    transfers_out: Decimal
    issues: Decimal
    closing_stock: Decimal
    back_charges: Decimal
    credits: Decimal
    condemnations: Decimal
    adjustments: Decimal
    consumption: Decimal
    total_mandays: int | None = None
    manday_cost: Decimal | None = None
