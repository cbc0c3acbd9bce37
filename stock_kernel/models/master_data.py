"""
Master data: items, locations and suppliers.

These rows carry no costing logic.  They are created by an admin and only
ever soft-deactivated, so historical deliveries, issues and snapshots keep
valid references.  ``code`` is unique and never changes after creation
(enforced by db/immutability.py).
"""

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase
from stock_kernel.domain.dtos import LocationType, Unit


class Item(TrackedBase):
    """Global product definition."""

    __tablename__ = "items"

    __table_args__ = (
        UniqueConstraint("code", name="uq_item_code"),
        Index("idx_item_category", "category"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(10), nullable=False, default=Unit.EA.value)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Item {self.code}: {self.name} ({self.unit})>"


class Location(TrackedBase):
    """A physical site that owns its own stock ledger rows."""

    __tablename__ = "locations"

    __table_args__ = (UniqueConstraint("code", name="uq_location_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    location_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LocationType.KITCHEN.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Location {self.code}: {self.location_type}>"


class Supplier(TrackedBase):
    __tablename__ = "suppliers"

    __table_args__ = (UniqueConstraint("code", name="uq_supplier_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Supplier {self.code}>"
