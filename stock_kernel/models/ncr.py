"""
NCR (non-conformance report) model.

Raised automatically by the delivery orchestrator when a delivery line's
price differs from the period's locked price, or manually by a supervisor
for quality/quantity problems.  Issues and transfers never create NCRs.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase
from stock_kernel.domain.dtos import NCRStatus, NCRType


class NCR(TrackedBase):
    __tablename__ = "ncrs"

    __table_args__ = (
        UniqueConstraint("ncr_no", name="uq_ncr_no"),
        Index("idx_ncr_period_location", "period_id", "location_id"),
        Index("idx_ncr_status", "status"),
        Index("idx_ncr_delivery_line", "delivery_line_id"),
    )

    ncr_no: Mapped[str] = mapped_column(String(30), nullable=False)
    ncr_type: Mapped[str] = mapped_column(String(20), nullable=False, default=NCRType.MANUAL.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=NCRStatus.OPEN.value)

    period_id: Mapped[UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)
    delivery_id: Mapped[UUID | None] = mapped_column(ForeignKey("deliveries.id"), nullable=True)
    delivery_line_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("delivery_lines.id"), nullable=True
    )
    item_id: Mapped[UUID | None] = mapped_column(ForeignKey("items.id"), nullable=True)

    quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    expected_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance_percent: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Absolute money at stake (|variance| x qty for price variances)
    value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # "credit" or "loss", recorded when the supplier answers
    resolution: Mapped[str | None] = mapped_column(String(10), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<NCR {self.ncr_no} {self.ncr_type}: {self.status} value={self.value}>"
