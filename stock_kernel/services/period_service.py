"""
PeriodService -- period lifecycle and the posting gate.

Responsibility:
    Owns the period state machine (DRAFT -> OPEN -> PENDING_CLOSE -> CLOSED)
    and the per-location readiness rows, and answers the question every
    orchestrator asks first: "may stock move on this date?"

Architecture position:
    Kernel > Services -- imperative shell.
    Called by every orchestrator at the start of a transaction
    (``require_postable``) and by PeriodCloseCoordinator to drive the
    lifecycle.

Invariants enforced:
    - At most one period is OPEN or PENDING_CLOSE at a time.
    - Transitions are linear; nothing leaves CLOSED.
    - Period date ranges never overlap.
    - Postings take a shared lock (``FOR SHARE``) on the period row and the
      close takes an exclusive one (``FOR UPDATE``), so a close waits for
      in-flight postings and later postings see CLOSED.
    - Flush-only: never commits or rolls back.

Failure modes:
    - PeriodNotFoundError: no period covers the date.
    - PeriodClosedError: the covering period is not postable.
    - PeriodAlreadyOpenError, PeriodAlreadyClosedError,
      InvalidPeriodTransitionError, PeriodImmutableError,
      PeriodOverlapError, NotAllLocationsReadyError.

Audit relevance:
    Creation, opening, readiness changes and closing are logged with
    period_code, actor_id and timestamps.  Rejected postings are logged at
    WARNING.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    PeriodInfo,
    PeriodLocationInfo,
    PeriodLocationStatus,
    PeriodStatus,
)
from stock_kernel.exceptions import (
    EntityNotFoundError,
    InvalidPeriodTransitionError,
    NotAllLocationsReadyError,
    PeriodAlreadyClosedError,
    PeriodAlreadyOpenError,
    PeriodClosedError,
    PeriodImmutableError,
    PeriodNotFoundError,
    PeriodOverlapError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.master_data import Location
from stock_kernel.models.period import Period, PeriodLocation
from stock_kernel.services.base import BaseService

logger = get_logger("services.period")

_ALLOWED_TRANSITIONS: frozenset[tuple[PeriodStatus, PeriodStatus]] = frozenset(
    {
        (PeriodStatus.DRAFT, PeriodStatus.OPEN),
        (PeriodStatus.OPEN, PeriodStatus.PENDING_CLOSE),
        (PeriodStatus.OPEN, PeriodStatus.CLOSED),
        (PeriodStatus.PENDING_CLOSE, PeriodStatus.CLOSED),
    }
)


class PeriodService(BaseService[Period]):
    """
    Service for the period lifecycle.

    Contract:
        Public methods return frozen ``PeriodInfo`` / ``PeriodLocationInfo``
        DTOs.  ``lock_period`` is the one exception: it hands the locked ORM
        row to the close coordinator, which runs inside the same
        transaction.

    Non-goals:
        - Does NOT snapshot stock or seed opening balances
          (PeriodCloseCoordinator in stock_services/).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        block_posting_when_pending_close: bool = False,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._block_pending_close = block_posting_when_pending_close

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def to_dto(period: Period) -> PeriodInfo:
        return PeriodInfo(
            id=period.id,
            period_code=period.period_code,
            name=period.name,
            start_date=period.start_date,
            end_date=period.end_date,
            status=PeriodStatus(getattr(period.status, "value", period.status)),
            opened_at=period.opened_at,
            closed_at=period.closed_at,
            closed_by_id=period.closed_by_id,
        )

    def _location_dto(self, row: PeriodLocation, location_code: str) -> PeriodLocationInfo:
        return PeriodLocationInfo(
            period_id=row.period_id,
            location_id=row.location_id,
            location_code=location_code,
            status=PeriodLocationStatus(row.status),
            ready_at=row.ready_at,
            opening_value=row.opening_value,
            closing_value=row.closing_value,
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_period(
        self,
        period_code: str,
        name: str,
        start_date: date,
        end_date: date,
        actor_id: UUID,
        location_ids: list[UUID] | None = None,
    ) -> PeriodInfo:
        """
        Create a DRAFT period.

        Every active location takes part unless ``location_ids`` narrows the
        set.

        Raises:
            ValidationError: start_date after end_date.
            PeriodOverlapError: date range collides with an existing period.
        """
        if start_date > end_date:
            raise ValidationError(
                f"start_date ({start_date}) cannot be after end_date ({end_date})",
                field="start_date",
                value=str(start_date),
            )

        self._validate_no_overlap(period_code, start_date, end_date)

        period = Period(
            period_code=period_code,
            name=name,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.DRAFT.value,
            created_by_id=actor_id,
        )
        self.session.add(period)
        self.session.flush()

        query = select(Location).where(Location.is_active.is_(True))
        if location_ids is not None:
            query = query.where(Location.id.in_(location_ids))
        for location in self.session.execute(query.order_by(Location.code)).scalars():
            self.session.add(
                PeriodLocation(
                    period_id=period.id,
                    location_id=location.id,
                    status=PeriodLocationStatus.OPEN.value,
                    created_by_id=actor_id,
                )
            )
        self.session.flush()
        self.session.expire(period, ["locations"])

        logger.info(
            "period_created",
            extra={
                "period_code": period_code,
                "start_date": str(start_date),
                "end_date": str(end_date),
                "actor_id": str(actor_id),
            },
        )
        return self.to_dto(period)

    def _validate_no_overlap(self, new_period_code: str, start_date: date, end_date: date) -> None:
        # Two ranges overlap if start1 <= end2 AND start2 <= end1
        overlapping = self.session.execute(
            select(Period)
            .where(Period.start_date <= end_date, Period.end_date >= start_date)
            .order_by(Period.start_date)
        ).scalars().first()

        if overlapping is not None:
            raise PeriodOverlapError(
                new_period_code=new_period_code,
                existing_period_code=overlapping.period_code,
                overlap_start=str(max(start_date, overlapping.start_date)),
                overlap_end=str(min(end_date, overlapping.end_date)),
            )

    def add_location(self, period_id: UUID, location_id: UUID, actor_id: UUID) -> PeriodLocationInfo:
        """Enrol a location (e.g. one created mid-period) in a period that is not closed."""
        period = self._get_period(period_id)
        if period.is_closed:
            raise PeriodImmutableError(period.period_code, "add location to")

        row = self._period_location(period_id, location_id)
        if row is None:
            row = PeriodLocation(
                period_id=period_id,
                location_id=location_id,
                status=PeriodLocationStatus.OPEN.value,
                created_by_id=actor_id,
            )
            self.session.add(row)
            self.session.flush()
            self.session.expire(period, ["locations"])
        return self._location_dto(row, self._location_code(location_id))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_period(self, period_id: UUID) -> Period:
        period = self.session.get(Period, period_id)
        if period is None:
            raise EntityNotFoundError("Period", str(period_id))
        return period

    def lock_period(self, period_id: UUID) -> Period:
        """Exclusive row lock on the period (close, open, readiness changes)."""
        period = self.session.execute(
            select(Period)
            .where(Period.id == period_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise EntityNotFoundError("Period", str(period_id))
        return period

    def get_period(self, period_id: UUID) -> PeriodInfo:
        return self.to_dto(self._get_period(period_id))

    def get_period_by_code(self, period_code: str) -> PeriodInfo:
        period = self.session.execute(
            select(Period).where(Period.period_code == period_code)
        ).scalar_one_or_none()
        if period is None:
            raise EntityNotFoundError("Period", period_code)
        return self.to_dto(period)

    def get_period_for_date(self, effective_date: date) -> PeriodInfo:
        period = self._find_period_for_date(effective_date, lock=False)
        if period is None:
            raise PeriodNotFoundError(str(effective_date))
        return self.to_dto(period)

    def _find_period_for_date(self, effective_date: date, lock: bool) -> Period | None:
        query = select(Period).where(
            Period.start_date <= effective_date,
            Period.end_date >= effective_date,
        )
        if lock:
            query = query.with_for_update(read=True).execution_options(populate_existing=True)
        return self.session.execute(query).scalar_one_or_none()

    def get_current_period(self) -> PeriodInfo | None:
        """The single OPEN or PENDING_CLOSE period, if any."""
        period = self.session.execute(
            select(Period).where(
                Period.status.in_(
                    [PeriodStatus.OPEN.value, PeriodStatus.PENDING_CLOSE.value]
                )
            )
        ).scalars().first()
        return self.to_dto(period) if period is not None else None

    def list_periods(self) -> list[PeriodInfo]:
        periods = self.session.execute(select(Period).order_by(Period.start_date)).scalars()
        return [self.to_dto(p) for p in periods]

    def get_previous_closed_period(self, before: date) -> PeriodInfo | None:
        """Most recent CLOSED period ending before ``before``."""
        period = self.session.execute(
            select(Period)
            .where(Period.end_date < before, Period.status == PeriodStatus.CLOSED.value)
            .order_by(Period.end_date.desc())
        ).scalars().first()
        return self.to_dto(period) if period is not None else None

    # ------------------------------------------------------------------
    # Posting gate
    # ------------------------------------------------------------------

    def _postable_statuses(self) -> frozenset[str]:
        if self._block_pending_close:
            return frozenset({PeriodStatus.OPEN.value})
        return frozenset({PeriodStatus.OPEN.value, PeriodStatus.PENDING_CLOSE.value})

    def is_mutable(self, period_id: UUID) -> bool:
        """True while stock may be posted into the period."""
        return self._get_period(period_id).status in self._postable_statuses()

    def require_postable(self, effective_date: date) -> PeriodInfo:
        """
        Resolve the period for ``effective_date`` and check stock may post.

        Takes a shared lock on the period row for the rest of the caller's
        transaction.

        Raises:
            PeriodNotFoundError: No period covers the date.
            PeriodClosedError: The period is DRAFT, CLOSED, or PENDING_CLOSE
                with ``block_posting_when_pending_close``.
        """
        period = self._find_period_for_date(effective_date, lock=True)
        if period is None:
            logger.warning(
                "posting_rejected_no_period",
                extra={"effective_date": str(effective_date)},
            )
            raise PeriodNotFoundError(str(effective_date))

        if period.status not in self._postable_statuses():
            logger.warning(
                "posting_rejected_period_not_open",
                extra={
                    "period_code": period.period_code,
                    "status": period.status,
                    "effective_date": str(effective_date),
                },
            )
            raise PeriodClosedError(
                period_code=period.period_code,
                status=period.status,
                effective_date=str(effective_date),
            )
        return self.to_dto(period)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _check_transition(self, period: Period, target: PeriodStatus) -> None:
        current = PeriodStatus(period.status)
        if current == PeriodStatus.CLOSED:
            if target == PeriodStatus.CLOSED:
                raise PeriodAlreadyClosedError(period.period_code)
            raise PeriodImmutableError(period.period_code, f"move to {target.value}")
        if (current, target) not in _ALLOWED_TRANSITIONS:
            raise InvalidPeriodTransitionError(period.period_code, current.value, target.value)

    def open_period(self, period_id: UUID, actor_id: UUID) -> PeriodInfo:
        """
        DRAFT -> OPEN.  From here on the period's prices are locked.

        Raises:
            PeriodAlreadyOpenError: Another period is OPEN or PENDING_CLOSE.
            ValidationError: The period has no locations.
        """
        period = self.lock_period(period_id)
        self._check_transition(period, PeriodStatus.OPEN)

        current = self.get_current_period()
        if current is not None and current.id != period.id:
            raise PeriodAlreadyOpenError(period.period_code, current.period_code)

        if not period.locations:
            raise ValidationError(
                f"Period {period.period_code} has no locations",
                field="locations",
            )

        period.status = PeriodStatus.OPEN.value
        period.opened_at = self._clock.now()
        period.opened_by_id = actor_id
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_opened",
            extra={"period_code": period.period_code, "actor_id": str(actor_id)},
        )
        return self.to_dto(period)

    def mark_pending_close(self, period_id: UUID, actor_id: UUID) -> PeriodInfo:
        """
        OPEN -> PENDING_CLOSE once every location is READY.

        Raises:
            NotAllLocationsReadyError: naming the locations still pending.
        """
        period = self.lock_period(period_id)
        self._check_transition(period, PeriodStatus.PENDING_CLOSE)
        self._require_all_ready(period)

        period.status = PeriodStatus.PENDING_CLOSE.value
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_pending_close",
            extra={"period_code": period.period_code, "actor_id": str(actor_id)},
        )
        return self.to_dto(period)

    def require_closable(self, period: Period) -> None:
        """
        Raise unless ``period`` may move to CLOSED now.

        Raises:
            PeriodAlreadyClosedError, InvalidPeriodTransitionError,
            NotAllLocationsReadyError.
        """
        self._check_transition(period, PeriodStatus.CLOSED)
        self._require_all_ready(period)

    def mark_closed(self, period: Period, actor_id: UUID) -> PeriodInfo:
        """
        OPEN/PENDING_CLOSE -> CLOSED on an already locked period row.

        Every PeriodLocation is closed in the same flush.
        """
        self.require_closable(period)

        now = self._clock.now()
        for row in period.locations:
            row.status = PeriodLocationStatus.CLOSED.value
            row.closed_at = now
        period.status = PeriodStatus.CLOSED.value
        period.closed_at = now
        period.closed_by_id = actor_id
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_status_closed",
            extra={"period_code": period.period_code, "actor_id": str(actor_id)},
        )
        return self.to_dto(period)

    # ------------------------------------------------------------------
    # Location readiness
    # ------------------------------------------------------------------

    def _period_location(self, period_id: UUID, location_id: UUID) -> PeriodLocation | None:
        return self.session.execute(
            select(PeriodLocation).where(
                PeriodLocation.period_id == period_id,
                PeriodLocation.location_id == location_id,
            )
        ).scalar_one_or_none()

    def _location_code(self, location_id: UUID) -> str:
        location = self.session.get(Location, location_id)
        return location.code if location is not None else str(location_id)

    def pending_locations(self, period: Period) -> list[str]:
        """Codes of the locations not yet READY, sorted."""
        pending = [
            self._location_code(row.location_id)
            for row in period.locations
            if row.status != PeriodLocationStatus.READY.value
        ]
        return sorted(pending)

    def _require_all_ready(self, period: Period) -> None:
        pending = self.pending_locations(period)
        if pending:
            logger.warning(
                "period_locations_not_ready",
                extra={"period_code": period.period_code, "pending": pending},
            )
            raise NotAllLocationsReadyError(period.period_code, pending)

    def set_location_ready(
        self, period: Period, location_id: UUID, ready: bool, actor_id: UUID
    ) -> PeriodLocationInfo:
        """
        Flip one location's READY flag on a locked OPEN period.

        Marking ready twice is a no-op.  Readiness cannot be withdrawn once
        the period has moved past OPEN.
        """
        row = self._period_location(period.id, location_id)
        if row is None:
            raise EntityNotFoundError("PeriodLocation", f"{period.period_code}/{location_id}")

        target = PeriodLocationStatus.READY if ready else PeriodLocationStatus.OPEN
        if row.status == target.value:
            return self._location_dto(row, self._location_code(location_id))

        if period.status != PeriodStatus.OPEN.value:
            raise InvalidPeriodTransitionError(
                period.period_code,
                period.status,
                f"location {target.value}",
            )

        row.status = target.value
        row.ready_at = self._clock.now() if ready else None
        row.ready_by_id = actor_id if ready else None
        row.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_location_ready" if ready else "period_location_unready",
            extra={
                "period_code": period.period_code,
                "location_id": str(location_id),
                "actor_id": str(actor_id),
            },
        )
        return self._location_dto(row, self._location_code(location_id))

    def get_period_locations(self, period_id: UUID) -> list[PeriodLocationInfo]:
        period = self._get_period(period_id)
        return sorted(
            (self._location_dto(row, self._location_code(row.location_id)) for row in period.locations),
            key=lambda info: info.location_code,
        )

    def set_location_values(
        self,
        period_id: UUID,
        location_id: UUID,
        *,
        opening_value=None,
        closing_value=None,
    ) -> None:
        """Record opening/closing stock value on the PeriodLocation row."""
        row = self._period_location(period_id, location_id)
        if row is None:
            raise EntityNotFoundError("PeriodLocation", f"{period_id}/{location_id}")
        if opening_value is not None:
            row.opening_value = opening_value
        if closing_value is not None:
            row.closing_value = closing_value
        self.session.flush()
