"""
Module: stock_kernel.models.documents
Responsibility: ORM models for the three stock documents -- Delivery,
    Issue and Transfer -- and their lines.
Architecture position: Kernel > Models.  Written by the orchestrators in
    stock_services; read by reporting and reconciliation.

Invariants enforced:
    - Document numbers are unique (DEL-/ISS-/TRF-YYYY-NNN from
      SequenceService).
    - Deliveries and issues are immutable once posted; corrections are new
      documents (db/immutability.py).
    - A supplier invoice can be delivered only once
      (uq_delivery_supplier_invoice).
    - Transfers carry their approval state; their lines get unit_cost and
      line_value only when the transfer completes.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.domain.dtos import TransferStatus


# =============================================================================
# Delivery
# =============================================================================


class Delivery(TrackedBase):
    """Goods received at a location from a supplier."""

    __tablename__ = "deliveries"

    __table_args__ = (
        UniqueConstraint("delivery_no", name="uq_delivery_no"),
        UniqueConstraint("supplier_id", "invoice_ref", name="uq_delivery_supplier_invoice"),
        Index("idx_delivery_period_location", "period_id", "location_id"),
    )

    delivery_no: Mapped[str] = mapped_column(String(30), nullable=False)
    period_id: Mapped[UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(ForeignKey("suppliers.id"), nullable=False)
    invoice_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    has_variance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    lines: Mapped[list["DeliveryLine"]] = relationship(
        back_populates="delivery",
        cascade="all, delete-orphan",
        order_by="DeliveryLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<Delivery {self.delivery_no} total={self.total_amount}>"


class DeliveryLine(TrackedBase):
    __tablename__ = "delivery_lines"

    __table_args__ = (
        UniqueConstraint("delivery_id", "line_no", name="uq_delivery_line_no"),
        Index("idx_delivery_line_item", "item_id"),
    )

    delivery_id: Mapped[UUID] = mapped_column(ForeignKey("deliveries.id"), nullable=False)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_value: Mapped[Decimal] = mapped_column(nullable=False)

    # Locked period price and (unit_price - period_price); null when no price was set
    period_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    price_variance: Mapped[Decimal | None] = mapped_column(nullable=True)

    wac_before: Mapped[Decimal] = mapped_column(nullable=False)
    wac_after: Mapped[Decimal] = mapped_column(nullable=False)

    delivery: Mapped[Delivery] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<DeliveryLine #{self.line_no} item={self.item_id} qty={self.quantity} @ {self.unit_price}>"


# =============================================================================
# Issue
# =============================================================================


class Issue(TrackedBase):
    """Stock consumed at a location, charged to a cost centre."""

    __tablename__ = "issues"

    __table_args__ = (
        UniqueConstraint("issue_no", name="uq_issue_no"),
        Index("idx_issue_period_location", "period_id", "location_id"),
    )

    issue_no: Mapped[str] = mapped_column(String(30), nullable=False)
    period_id: Mapped[UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)
    cost_centre: Mapped[str] = mapped_column(String(20), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)

    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    lines: Mapped[list["IssueLine"]] = relationship(
        back_populates="issue",
        cascade="all, delete-orphan",
        order_by="IssueLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<Issue {self.issue_no} total={self.total_value}>"


class IssueLine(TrackedBase):
    __tablename__ = "issue_lines"

    __table_args__ = (
        UniqueConstraint("issue_id", "line_no", name="uq_issue_line_no"),
        Index("idx_issue_line_item", "item_id"),
    )

    issue_id: Mapped[UUID] = mapped_column(ForeignKey("issues.id"), nullable=False)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    # WAC read before the mutation; reporting only
    wac_at_issue: Mapped[Decimal] = mapped_column(nullable=False)
    line_value: Mapped[Decimal] = mapped_column(nullable=False)

    issue: Mapped[Issue] = relationship(back_populates="lines")


# =============================================================================
# Transfer
# =============================================================================


class Transfer(TrackedBase):
    """
    Stock moved between two locations.

    Stock moves only when the transfer is approved; a DRAFT, pending or
    rejected transfer never touches either location's ledger.
    """

    __tablename__ = "transfers"

    __table_args__ = (
        UniqueConstraint("transfer_no", name="uq_transfer_no"),
        Index("idx_transfer_status", "status"),
        Index("idx_transfer_from", "from_location_id"),
        Index("idx_transfer_to", "to_location_id"),
    )

    transfer_no: Mapped[str] = mapped_column(String(30), nullable=False)
    period_id: Mapped[UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    from_location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)
    to_location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)
    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransferStatus.DRAFT.value
    )

    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_value: Mapped[Decimal | None] = mapped_column(nullable=True)

    lines: Mapped[list["TransferLine"]] = relationship(
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="TransferLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<Transfer {self.transfer_no}: {self.status}>"


class TransferLine(TrackedBase):
    __tablename__ = "transfer_lines"

    __table_args__ = (
        UniqueConstraint("transfer_id", "line_no", name="uq_transfer_line_no"),
    )

    transfer_id: Mapped[UUID] = mapped_column(ForeignKey("transfers.id"), nullable=False)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    # Source WAC at approval time
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    line_value: Mapped[Decimal | None] = mapped_column(nullable=True)

    transfer: Mapped[Transfer] = relationship(back_populates="lines")
