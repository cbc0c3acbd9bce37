"""
Period and PeriodLocation models.

A Period is the accounting window transactions post into.  Its status moves
DRAFT -> OPEN -> PENDING_CLOSE -> CLOSED and never backwards; once CLOSED
the row is frozen by the immutability listeners.

PeriodLocation tracks, for every location taking part in the period, whether
its reconciliation is done (READY) and the opening/closing stock value.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.domain.dtos import PeriodLocationStatus, PeriodStatus


class Period(TrackedBase):
    """
    Accounting period (typically one calendar month).

    Guarantees:
        - period_code is unique (uq_period_code).
        - Non-overlapping date ranges are checked by PeriodService at
          creation time, not by the table.
    """

    __tablename__ = "periods"

    __table_args__ = (
        UniqueConstraint("period_code", name="uq_period_code"),
        Index("idx_period_dates", "start_date", "end_date"),
        Index("idx_period_status", "status"),
    )

    # e.g. "2025-01"
    period_code: Mapped[str] = mapped_column(String(20), nullable=False)

    # e.g. "January 2025"
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Inclusive boundaries
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PeriodStatus.DRAFT.value,
        nullable=False,
    )

    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    opened_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    locations: Mapped[list["PeriodLocation"]] = relationship(
        back_populates="period",
        cascade="all, delete-orphan",
        order_by="PeriodLocation.created_at",
    )

    def __repr__(self) -> str:
        return f"<Period {self.period_code}: {self.status}>"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date


class PeriodLocation(TrackedBase):
    """Readiness and opening/closing value of one location in one period."""

    __tablename__ = "period_locations"

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", name="uq_period_location"),
        Index("idx_period_location_status", "period_id", "status"),
    )

    period_id: Mapped[UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PeriodLocationStatus.OPEN.value,
        nullable=False,
    )

    ready_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ready_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    opening_value: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    closing_value: Mapped[Decimal | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    period: Mapped[Period] = relationship(back_populates="locations")

    def __repr__(self) -> str:
        return f"<PeriodLocation period={self.period_id} location={self.location_id}: {self.status}>"
