"""
stock_services.reconciliation_service -- Per-location period reconciliation.

Responsibility:
    Rebuilds one location's stock value movements for a period from the
    posted documents (opening value, receipts, transfers in and out,
    issues, closing value), combines them with the supervisor's
    adjustments, and computes consumption and cost per manday.

Architecture position:
    Services -- gathers inputs from the kernel models, delegates the
    arithmetic to stock_engines.reconciliation, persists the result in the
    Reconciliation row.  Owns its transaction.

Invariants enforced:
    - Movement columns are always recomputed from documents, never typed in.
    - Only COMPLETED transfers count.
    - The closing value of a CLOSED period comes from its close; an open
      period uses the live ledger value.
    - Adjustments cannot change once the period is CLOSED.

Failure modes:
    - PeriodImmutableError when adjusting a CLOSED period.
    - ValidationError for negative back-charges, credits, condemnations or
      mandays <= 0.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stock_config import StockLedgerConfig
from stock_engines.reconciliation import ConsumptionInput, calculate_consumption, calculate_manday_cost
from stock_kernel.domain.dtos import ActorContext, TransferStatus
from stock_kernel.domain.values import ZERO, round_value, to_decimal
from stock_kernel.exceptions import EntityNotFoundError, PeriodImmutableError, ValidationError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.documents import Delivery, Issue, Transfer
from stock_kernel.models.period import Period, PeriodLocation
from stock_kernel.models.reconciliation import Reconciliation
from stock_services._transaction import atomic
from stock_services._types import ReconciliationInfo
from stock_services._wiring import KernelServices

logger = get_logger("services.reconciliation")

_ADJUSTMENT_FIELDS = ("back_charges", "credits", "condemnations", "adjustments")


class ReconciliationService:
    """Consumption and manday cost per location and period."""

    def __init__(
        self,
        session: Session,
        config: StockLedgerConfig | None = None,
        kernel: KernelServices | None = None,
    ):
        kernel = KernelServices.resolve(session, None, config, kernel)
        self._session = session
        self._config = kernel.config
        self._ledger = kernel.ledger

    def _sum(self, column, *criteria) -> Decimal:
        total = self._session.execute(select(func.coalesce(func.sum(column), 0)).where(*criteria)).scalar_one()
        # SQLite may hand the aggregate back as float
        return round_value(to_decimal(str(total), "sum"), self._config.value_places)

    def _period_location(self, period_id: UUID, location_id: UUID) -> tuple[Period, PeriodLocation]:
        period = self._session.get(Period, period_id)
        if period is None:
            raise EntityNotFoundError("Period", str(period_id))
        row = self._session.execute(
            select(PeriodLocation).where(
                PeriodLocation.period_id == period_id,
                PeriodLocation.location_id == location_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise EntityNotFoundError("PeriodLocation", f"{period.period_code}/{location_id}")
        return period, row

    def _get_or_create(self, period_id: UUID, location_id: UUID, actor_id: UUID) -> Reconciliation:
        record = self._session.execute(
            select(Reconciliation)
            .where(Reconciliation.period_id == period_id, Reconciliation.location_id == location_id)
            .with_for_update()
        ).scalar_one_or_none()
        if record is None:
            record = Reconciliation(period_id=period_id, location_id=location_id, created_by_id=actor_id)
            for name in _ADJUSTMENT_FIELDS:
                setattr(record, name, ZERO)
            self._session.add(record)
        return record

    def _movements(self, period: Period, row: PeriodLocation) -> dict[str, Decimal]:
        location_id = row.location_id
        completed = Transfer.status == TransferStatus.COMPLETED.value
        if period.is_closed and row.closing_value is not None:
            closing = row.closing_value
        else:
            closing = self._ledger.location_value(period.id, location_id)
        return {
            "opening_stock": round_value(row.opening_value, self._config.value_places),
            "receipts": self._sum(
                Delivery.total_amount,
                Delivery.period_id == period.id,
                Delivery.location_id == location_id,
            ),
            "transfers_in": self._sum(
                Transfer.total_value,
                Transfer.period_id == period.id,
                Transfer.to_location_id == location_id,
                completed,
            ),
            "transfers_out": self._sum(
                Transfer.total_value,
                Transfer.period_id == period.id,
                Transfer.from_location_id == location_id,
                completed,
            ),
            "issues": self._sum(
                Issue.total_value,
                Issue.period_id == period.id,
                Issue.location_id == location_id,
            ),
            "closing_stock": round_value(closing, self._config.value_places),
        }

    def _rebuild(self, period: Period, row: PeriodLocation, record: Reconciliation, actor_id: UUID) -> ReconciliationInfo:
        movements = self._movements(period, row)
        for name, value in movements.items():
            setattr(record, name, value)
        record.updated_by_id = actor_id
        self._session.flush()

        consumption = calculate_consumption(
            ConsumptionInput(
                **movements,
                **{name: getattr(record, name) for name in _ADJUSTMENT_FIELDS},
            )
        )
        manday_cost = None
        if record.total_mandays:
            manday_cost = calculate_manday_cost(consumption.consumption, record.total_mandays).manday_cost

        return ReconciliationInfo(
            period_id=period.id,
            location_id=row.location_id,
            opening_stock=movements["opening_stock"],
            receipts=movements["receipts"],
            transfers_in=movements["transfers_in"],
            transfers_out=movements["transfers_out"],
            issues=movements["issues"],
            closing_stock=movements["closing_stock"],
            back_charges=record.back_charges,
            credits=record.credits,
            condemnations=record.condemnations,
            adjustments=record.adjustments,
            consumption=consumption.consumption,
            total_mandays=record.total_mandays,
            manday_cost=manday_cost,
        )

    @staticmethod
    def _validate_mandays(total_mandays: int | None) -> None:
        if total_mandays is not None and (isinstance(total_mandays, bool) or total_mandays <= 0):
            raise ValidationError(
                f"total_mandays must be greater than zero: {total_mandays}",
                field="total_mandays",
                value=total_mandays,
            )

    def build(
        self,
        ctx: ActorContext,
        period_id: UUID,
        location_id: UUID,
        total_mandays: int | None = None,
    ) -> ReconciliationInfo:
        """
        Recompute the reconciliation of one location and commit.

        ``total_mandays``, when given, is stored and used for the manday
        cost; otherwise the stored figure (if any) is used.
        """
        self._validate_mandays(total_mandays)
        with LogContext.bind(actor_id=ctx.user_id, period_id=period_id, location_id=location_id):
            with atomic(self._session, "build_reconciliation"):
                period, row = self._period_location(period_id, location_id)
                record = self._get_or_create(period_id, location_id, ctx.user_id)
                if total_mandays is not None and not period.is_closed:
                    record.total_mandays = total_mandays
                info = self._rebuild(period, row, record, ctx.user_id)

            logger.info(
                "reconciliation_built",
                extra={
                    "period_code": period.period_code,
                    "consumption": str(info.consumption),
                    "manday_cost": str(info.manday_cost) if info.manday_cost is not None else None,
                },
            )
        return info

    def record_adjustments(
        self,
        ctx: ActorContext,
        period_id: UUID,
        location_id: UUID,
        back_charges: Decimal | int | str | None = None,
        credits: Decimal | int | str | None = None,
        condemnations: Decimal | int | str | None = None,
        adjustments: Decimal | int | str | None = None,
        total_mandays: int | None = None,
    ) -> ReconciliationInfo:
        """
        Store supervisor-entered adjustments and return the rebuilt figures.

        ``adjustments`` may be negative; the other three may not.
        """
        given = {
            "back_charges": back_charges,
            "credits": credits,
            "condemnations": condemnations,
            "adjustments": adjustments,
        }
        values: dict[str, Decimal] = {}
        for name, raw in given.items():
            if raw is None:
                continue
            value = round_value(to_decimal(raw, name), self._config.value_places)
            if name != "adjustments" and value < 0:
                raise ValidationError(f"{name} cannot be negative: {value}", field=name, value=str(value))
            values[name] = value
        self._validate_mandays(total_mandays)

        with LogContext.bind(actor_id=ctx.user_id, period_id=period_id, location_id=location_id):
            with atomic(self._session, "record_reconciliation_adjustments"):
                period, row = self._period_location(period_id, location_id)
                if period.is_closed:
                    raise PeriodImmutableError(period.period_code, "record reconciliation adjustments for")
                record = self._get_or_create(period_id, location_id, ctx.user_id)
                for name, value in values.items():
                    setattr(record, name, value)
                if total_mandays is not None:
                    record.total_mandays = total_mandays
                info = self._rebuild(period, row, record, ctx.user_id)

            logger.info(
                "reconciliation_adjusted",
                extra={
                    "period_code": period.period_code,
                    "fields": sorted(values),
                    "consumption": str(info.consumption),
                },
            )
        return info
