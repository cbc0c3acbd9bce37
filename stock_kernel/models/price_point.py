"""PricePoint -- the locked expected unit price of an item for one period."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class PricePoint(TrackedBase):
    """
    Expected unit price for (item, period).

    Upserted only while the period is DRAFT (PriceBookService); from OPEN
    onwards it is read-only and serves as the variance baseline.
    """

    __tablename__ = "price_points"

    __table_args__ = (
        UniqueConstraint("period_id", "item_id", name="uq_price_point_period_item"),
    )

    period_id: Mapped[UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)

    price: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="SAR")

    set_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    set_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<PricePoint item={self.item_id} period={self.period_id}: {self.price} {self.currency}>"
