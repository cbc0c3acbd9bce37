"""Per-location period reconciliation record (consumption and manday cost inputs)."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class Reconciliation(TrackedBase):
    """
    Stock value movements of one location over one period.

    The movement columns are rebuilt from posted documents by
    ReconciliationService; the four adjustment columns are entered by the
    location supervisor.
    """

    __tablename__ = "reconciliations"

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", name="uq_reconciliation_period_location"),
    )

    period_id: Mapped[UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)

    opening_stock: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    receipts: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    transfers_in: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    transfers_out: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    issues: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    closing_stock: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    back_charges: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credits: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    condemnations: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    adjustments: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    total_mandays: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Reconciliation period={self.period_id} location={self.location_id}>"
