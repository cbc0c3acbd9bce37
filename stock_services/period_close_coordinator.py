"""
stock_services.period_close_coordinator -- Period lifecycle across locations.

Responsibility:
    Drives a period from DRAFT to CLOSED for all locations together:
    opening (with carry-forward of the previous close), per-location
    readiness, the close itself (snapshot every ledger row, record closing
    values, flip to CLOSED) and the roll-forward into the next month.

Architecture position:
    Services -- orchestration over PeriodService, StockLedgerService and
    PriceBookService.  Owns the transaction for every public operation.

Invariants enforced:
    - The close takes an exclusive lock on the period row; postings hold a
      shared lock, so the close waits for them and later postings fail.
    - The close is refused, with the pending location codes, until every
      location is READY.  Nothing is partially closed.
    - One immutable PeriodSnapshot per ledger row of the period, zero rows
      included.
    - Opening a period seeds one ledger row per snapshot of the previous
      CLOSED period, with identical quantity and WAC.
    - When the last location marks ready the period moves to PENDING_CLOSE.

Failure modes:
    - NotAllLocationsReadyError naming the pending locations.
    - PeriodAlreadyClosedError, InvalidPeriodTransitionError.
    - PeriodAlreadyOpenError when opening while another period is current.
    - ConcurrencyConflictError: transient; retry the whole call.

Audit relevance:
    ``period_closed`` records snapshot count and total closing value;
    ``period_opened_with_carry_forward`` records the seeded row count.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config import StockLedgerConfig
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.dtos import ActorContext, PeriodInfo, PeriodLocationInfo, PeriodStatus
from stock_kernel.domain.values import ZERO, round_value
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.master_data import Location
from stock_kernel.models.period import Period
from stock_kernel.models.stock_ledger import PeriodSnapshot, StockLedgerEntry
from stock_kernel.services.period_service import PeriodService
from stock_services._transaction import atomic
from stock_services._types import CloseResult, OpenResult
from stock_services._wiring import KernelServices

logger = get_logger("services.period_close")


def next_month_bounds(end_date: date) -> tuple[date, date]:
    """First and last day of the month following ``end_date``."""
    start = end_date + timedelta(days=1)
    last_day = calendar.monthrange(start.year, start.month)[1]
    return start, date(start.year, start.month, last_day)


class PeriodCloseCoordinator:
    """
    Period lifecycle orchestration.

    Contract:
        Every public method commits on success and rolls back on failure.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockLedgerConfig | None = None,
        kernel: KernelServices | None = None,
    ):
        kernel = KernelServices.resolve(session, clock, config, kernel)
        self._session = session
        self._clock = kernel.clock
        self._config = kernel.config
        self._periods = kernel.periods
        self._ledger = kernel.ledger
        self._prices = kernel.prices

    # ------------------------------------------------------------------
    # Creation and opening
    # ------------------------------------------------------------------

    def create_period(
        self,
        ctx: ActorContext,
        period_code: str,
        name: str,
        start_date: date,
        end_date: date,
        location_ids: list[UUID] | None = None,
    ) -> PeriodInfo:
        """Create a DRAFT period and commit."""
        with LogContext.bind(actor_id=ctx.user_id):
            with atomic(self._session, "create_period"):
                info = self._periods.create_period(
                    period_code, name, start_date, end_date, ctx.user_id, location_ids
                )
        return info

    def open_period(self, ctx: ActorContext, period_id: UUID) -> OpenResult:
        """
        DRAFT -> OPEN, seeding opening stock from the previous close.

        Raises:
            PeriodAlreadyOpenError: Another period is OPEN or PENDING_CLOSE.
        """
        with LogContext.bind(actor_id=ctx.user_id, period_id=period_id):
            with atomic(self._session, "open_period"):
                result = self._open(period_id, ctx.user_id)
        return result

    def _open(self, period_id: UUID, actor_id: UUID) -> OpenResult:
        info = self._periods.open_period(period_id, actor_id)
        previous = self._periods.get_previous_closed_period(info.start_date)

        seeded = 0
        opening: dict[UUID, Decimal] = {}
        if previous is not None:
            snapshots = self._session.execute(
                select(PeriodSnapshot)
                .where(PeriodSnapshot.period_id == previous.id)
                .order_by(PeriodSnapshot.location_id, PeriodSnapshot.item_id)
            ).scalars()
            for snapshot in snapshots:
                self._ledger.seed_opening(
                    period_id,
                    snapshot.location_id,
                    snapshot.item_id,
                    snapshot.on_hand,
                    snapshot.wac,
                    actor_id,
                )
                opening[snapshot.location_id] = opening.get(snapshot.location_id, ZERO) + snapshot.value
                seeded += 1

        opening_values: dict[str, Decimal] = {}
        for row in self._periods.get_period_locations(period_id):
            value = round_value(opening.get(row.location_id, ZERO), self._config.value_places)
            self._periods.set_location_values(period_id, row.location_id, opening_value=value)
            opening_values[row.location_code] = value

        logger.info(
            "period_opened_with_carry_forward",
            extra={
                "period_code": info.period_code,
                "previous_period_code": previous.period_code if previous else None,
                "carried_forward_count": seeded,
            },
        )
        return OpenResult(period=info, carried_forward_count=seeded, opening_values=opening_values)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def mark_location_ready(self, ctx: ActorContext, period_id: UUID, location_id: UUID) -> PeriodLocationInfo:
        """
        Confirm one location's reconciliation is complete.

        When this makes every location READY the period moves to
        PENDING_CLOSE in the same transaction.
        """
        with LogContext.bind(actor_id=ctx.user_id, period_id=period_id, location_id=location_id):
            with atomic(self._session, "mark_location_ready"):
                period = self._periods.lock_period(period_id)
                info = self._periods.set_location_ready(period, location_id, True, ctx.user_id)
                if period.status == PeriodStatus.OPEN.value and not self._periods.pending_locations(period):
                    self._periods.mark_pending_close(period_id, ctx.user_id)
        return info

    def mark_location_unready(self, ctx: ActorContext, period_id: UUID, location_id: UUID) -> PeriodLocationInfo:
        """Withdraw readiness while the period is still OPEN."""
        with LogContext.bind(actor_id=ctx.user_id, period_id=period_id, location_id=location_id):
            with atomic(self._session, "mark_location_unready"):
                period = self._periods.lock_period(period_id)
                info = self._periods.set_location_ready(period, location_id, False, ctx.user_id)
        return info

    def request_close(self, ctx: ActorContext, period_id: UUID) -> PeriodInfo:
        """
        OPEN -> PENDING_CLOSE.  Already PENDING_CLOSE is returned as is.

        Raises:
            NotAllLocationsReadyError: naming the pending locations.
        """
        with LogContext.bind(actor_id=ctx.user_id, period_id=period_id):
            with atomic(self._session, "request_close"):
                period = self._periods.lock_period(period_id)
                if period.status == PeriodStatus.PENDING_CLOSE.value:
                    info = PeriodService.to_dto(period)
                else:
                    info = self._periods.mark_pending_close(period_id, ctx.user_id)
        return info

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def close_period(self, ctx: ActorContext, period_id: UUID) -> CloseResult:
        """
        Snapshot every ledger row, record closing values and close.

        With ``open_next_period_on_close`` the next month is created (if
        missing) and opened with the snapshots carried forward, in the same
        transaction.
        """
        actor_id = ctx.user_id
        with LogContext.bind(actor_id=actor_id, period_id=period_id):
            with atomic(self._session, "close_period"):
                period = self._periods.lock_period(period_id)
                self._periods.require_closable(period)

                now = self._clock.now()
                entries = self._session.execute(
                    select(StockLedgerEntry)
                    .where(StockLedgerEntry.period_id == period_id)
                    .order_by(StockLedgerEntry.location_id, StockLedgerEntry.item_id)
                ).scalars().all()
                totals: dict[UUID, Decimal] = {}
                for entry in entries:
                    value = round_value(entry.on_hand * entry.wac, self._config.value_places)
                    self._session.add(
                        PeriodSnapshot(
                            period_id=period_id,
                            location_id=entry.location_id,
                            item_id=entry.item_id,
                            on_hand=entry.on_hand,
                            wac=entry.wac,
                            value=value,
                            snapshot_at=now,
                            created_by_id=actor_id,
                        )
                    )
                    totals[entry.location_id] = totals.get(entry.location_id, ZERO) + value
                self._session.flush()

                closing_values: dict[str, Decimal] = {}
                for row in period.locations:
                    value = round_value(totals.get(row.location_id, ZERO), self._config.value_places)
                    row.closing_value = value
                    row.updated_by_id = actor_id
                    location = self._session.get(Location, row.location_id)
                    closing_values[location.code if location else str(row.location_id)] = value
                self._session.flush()

                closed = self._periods.mark_closed(period, actor_id)

                next_info = None
                carried = 0
                if self._config.open_next_period_on_close:
                    draft = self._roll_forward(period, actor_id)
                    if draft is not None and draft.status == PeriodStatus.DRAFT:
                        opened = self._open(draft.id, actor_id)
                        next_info, carried = opened.period, opened.carried_forward_count
                    else:
                        next_info = draft

                result = CloseResult(
                    period=closed,
                    snapshot_count=len(entries),
                    closing_values=closing_values,
                    next_period=next_info,
                    carried_forward_count=carried,
                )

            logger.info(
                "period_closed",
                extra={
                    "period_code": closed.period_code,
                    "snapshot_count": result.snapshot_count,
                    "total_value": str(result.total_value),
                    "next_period_code": next_info.period_code if next_info else None,
                    "carried_forward_count": carried,
                },
            )
        return result

    # ------------------------------------------------------------------
    # Roll-forward
    # ------------------------------------------------------------------

    def roll_forward(self, ctx: ActorContext, period_id: UUID) -> PeriodInfo | None:
        """Create the following month's DRAFT period (if missing) and commit."""
        with LogContext.bind(actor_id=ctx.user_id, period_id=period_id):
            with atomic(self._session, "roll_forward"):
                period = self._periods.lock_period(period_id)
                info = self._roll_forward(period, ctx.user_id)
        return info

    def _roll_forward(self, period: Period, actor_id: UUID) -> PeriodInfo | None:
        start, end = next_month_bounds(period.end_date)
        existing = self._session.execute(
            select(Period).where(Period.start_date == start)
        ).scalar_one_or_none()
        if existing is not None:
            logger.info(
                "period_roll_forward_existing",
                extra={"period_code": existing.period_code, "status": existing.status},
            )
            return PeriodService.to_dto(existing)

        info = self._periods.create_period(
            period_code=f"{start:%Y-%m}",
            name=f"{calendar.month_name[start.month]} {start.year}",
            start_date=start,
            end_date=end,
            actor_id=actor_id,
        )
        copied = 0
        if self._config.copy_prices_on_roll_forward:
            copied = self._prices.copy_prices(period.id, info.id, actor_id)

        logger.info(
            "period_rolled_forward",
            extra={
                "from_period_code": period.period_code,
                "to_period_code": info.period_code,
                "prices_copied": copied,
            },
        )
        return info
