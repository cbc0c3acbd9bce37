"""
Module: stock_kernel.models.stock_ledger
Responsibility: ORM models for the mutable stock ledger row and the
    immutable period-close snapshot.
Architecture position: Kernel > Models.  Written only by StockLedgerService
    (ledger rows) and PeriodCloseCoordinator (snapshots).

Invariants enforced:
    - One ledger row per (period, location, item) (uq_stock_ledger_key).
    - on_hand >= 0 and wac >= 0 (CHECK constraints, also enforced in the
      service before the write).
    - ``version`` is the mapper version counter; an UPDATE that finds the
      row already bumped by another transaction raises StaleDataError,
      which the retry layer surfaces as ConcurrencyConflictError.
    - PeriodSnapshot rows are append-only (db/immutability.py).

Audit relevance:
    The snapshot taken at close is the authoritative closing balance of a
    period and the seed of the next period's opening ledger rows.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class StockLedgerEntry(TrackedBase):
    """Current on-hand quantity and weighted average cost of one item at one location."""

    __tablename__ = "stock_ledger_entries"

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", "item_id", name="uq_stock_ledger_key"),
        CheckConstraint("on_hand >= 0", name="ck_stock_ledger_on_hand_non_negative"),
        CheckConstraint("wac >= 0", name="ck_stock_ledger_wac_non_negative"),
        Index("idx_stock_ledger_location", "period_id", "location_id"),
    )

    period_id: Mapped[UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)

    on_hand: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    wac: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<StockLedgerEntry location={self.location_id} item={self.item_id} "
            f"on_hand={self.on_hand} wac={self.wac}>"
        )


class PeriodSnapshot(TrackedBase):
    """Closing (on_hand, wac) of one ledger row, frozen when its period closes."""

    __tablename__ = "period_snapshots"

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", "item_id", name="uq_period_snapshot_key"),
        Index("idx_period_snapshot_period", "period_id"),
    )

    period_id: Mapped[UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(ForeignKey("locations.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)

    on_hand: Mapped[Decimal] = mapped_column(nullable=False)
    wac: Mapped[Decimal] = mapped_column(nullable=False)
    value: Mapped[Decimal] = mapped_column(nullable=False)

    snapshot_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<PeriodSnapshot period={self.period_id} location={self.location_id} "
            f"item={self.item_id} on_hand={self.on_hand} wac={self.wac}>"
        )
