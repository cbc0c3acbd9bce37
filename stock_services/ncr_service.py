"""
stock_services.ncr_service -- Non-conformance reports.

Responsibility:
    Records price-variance NCRs on behalf of the delivery orchestrator,
    lets supervisors raise manual NCRs, moves NCRs through their follow-up
    workflow (OPEN -> SENT -> CREDITED/REJECTED -> CLOSED) and summarises
    NCR value per location and period.

Architecture position:
    Services -- orchestration over the kernel.
    ``record_price_variance`` is flush-only and runs inside the delivery
    transaction.  ``raise_manual`` and ``transition`` own their transaction.

Invariants enforced:
    - NCR numbers come from SequenceService (NCR-YYYY-NNN).
    - Only transitions listed in NCR_WORKFLOW are allowed.
    - Reaching CREDITED records resolution "credit", REJECTED records
      "loss"; both stamp resolved_at.
    - Issues and transfers never create NCRs.

Failure modes:
    - InvalidNCRTransitionError for a move the workflow does not allow.
    - EntityNotFoundError for an unknown NCR.
    - ValidationError for a manual NCR without reason or with negative value.
    - PeriodClosedError when raising a manual NCR against a closed period.

Audit relevance:
    ``ncr_created`` and ``ncr_status_changed`` events carry the NCR number,
    value and actor; notification delivery subscribes to these results.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config import StockLedgerConfig
from stock_engines.variance import VarianceResult, build_ncr_reason
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.dtos import ActorContext, NCRStatus, NCRType
from stock_kernel.domain.values import ZERO, round_quantity, round_value, to_decimal
from stock_kernel.exceptions import EntityNotFoundError, InvalidNCRTransitionError, ValidationError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.master_data import Item
from stock_kernel.models.ncr import NCR
from stock_kernel.services.sequence_service import SequenceService
from stock_services._transaction import atomic
from stock_services._types import NCRInfo, NCRSummary
from stock_services._wiring import KernelServices
from stock_services.workflows import NCR_WORKFLOW

logger = get_logger("services.ncr")

_RESOLUTIONS = {
    NCRStatus.CREDITED.value: "credit",
    NCRStatus.REJECTED.value: "loss",
}


def ncr_to_info(ncr: NCR) -> NCRInfo:
    return NCRInfo(
        id=ncr.id,
        ncr_no=ncr.ncr_no,
        ncr_type=NCRType(ncr.ncr_type),
        status=NCRStatus(ncr.status),
        period_id=ncr.period_id,
        location_id=ncr.location_id,
        value=ncr.value,
        reason=ncr.reason,
        auto_generated=ncr.auto_generated,
        delivery_id=ncr.delivery_id,
        delivery_line_id=ncr.delivery_line_id,
        item_id=ncr.item_id,
        quantity=ncr.quantity,
        expected_price=ncr.expected_price,
        actual_price=ncr.actual_price,
        variance_percent=ncr.variance_percent,
        resolution=ncr.resolution,
        resolution_notes=ncr.resolution_notes,
        sent_at=ncr.sent_at,
        resolved_at=ncr.resolved_at,
    )


class NCRService:
    """
    Create, advance and summarise NCRs.

    Non-goals:
        - Does NOT send e-mail; callers publish the returned NCRInfo.
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
        self._periods = kernel.periods
        self._sequences = kernel.sequences
        self._currency = kernel.config.currency

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def record_price_variance(
        self,
        variance: VarianceResult,
        location_id: UUID,
        delivery_id: UUID,
        delivery_line_id: UUID,
        document_year: int,
        actor_id: UUID,
    ) -> NCR:
        """
        Add an auto-generated PRICE_VARIANCE NCR for one delivery line.

        Flush-only; the delivery orchestrator owns the transaction.
        """
        item = self._session.get(Item, variance.item_id)
        ncr = NCR(
            ncr_no=self._sequences.next_document_number(SequenceService.NCR, document_year),
            ncr_type=NCRType.PRICE_VARIANCE.value,
            status=NCRStatus.OPEN.value,
            period_id=variance.period_id,
            location_id=location_id,
            delivery_id=delivery_id,
            delivery_line_id=delivery_line_id,
            item_id=variance.item_id,
            quantity=variance.quantity,
            expected_price=variance.period_price,
            actual_price=variance.actual_price,
            variance_percent=variance.percent_delta,
            value=variance.ncr_value,
            reason=build_ncr_reason(
                variance,
                item_name=item.name if item is not None else str(variance.item_id),
                item_code=item.code if item is not None else str(variance.item_id),
                currency=self._currency,
            ),
            auto_generated=True,
            created_by_id=actor_id,
        )
        self._session.add(ncr)
        self._session.flush()

        logger.info(
            "ncr_created",
            extra={
                "ncr_no": ncr.ncr_no,
                "ncr_type": ncr.ncr_type,
                "item_id": str(variance.item_id),
                "expected_price": str(variance.period_price),
                "actual_price": str(variance.actual_price),
                "percent_delta": str(variance.percent_delta),
                "value": str(ncr.value),
            },
        )
        return ncr

    def raise_manual(
        self,
        ctx: ActorContext,
        location_id: UUID,
        reason: str,
        value: Decimal | int | str = ZERO,
        item_id: UUID | None = None,
        quantity: Decimal | int | str | None = None,
        delivery_id: UUID | None = None,
        ncr_date: date | None = None,
    ) -> NCRInfo:
        """
        Raise a MANUAL NCR (quality or quantity problem) and commit.

        Raises:
            ValidationError: Empty reason or negative value/quantity.
            PeriodClosedError: The period for ``ncr_date`` does not accept postings.
        """
        if not reason or not reason.strip():
            raise ValidationError("NCR reason is required", field="reason")
        amount = round_value(to_decimal(value, "value"))
        if amount < 0:
            raise ValidationError(f"NCR value cannot be negative: {amount}", field="value")
        qty = None
        if quantity is not None:
            qty = round_quantity(to_decimal(quantity, "quantity"))
            if qty <= 0:
                raise ValidationError(f"NCR quantity must be positive: {qty}", field="quantity")

        effective = ncr_date or self._clock.today()
        with LogContext.bind(actor_id=ctx.user_id, location_id=location_id):
            with atomic(self._session, "raise_ncr"):
                period = self._periods.require_postable(effective)
                ncr = NCR(
                    ncr_no=self._sequences.next_document_number(SequenceService.NCR, effective.year),
                    ncr_type=NCRType.MANUAL.value,
                    status=NCRStatus.OPEN.value,
                    period_id=period.id,
                    location_id=location_id,
                    delivery_id=delivery_id,
                    item_id=item_id,
                    quantity=qty,
                    value=amount,
                    reason=reason.strip(),
                    auto_generated=False,
                    created_by_id=ctx.user_id,
                )
                self._session.add(ncr)
                self._session.flush()
                info = ncr_to_info(ncr)

            logger.info(
                "ncr_created",
                extra={"ncr_no": info.ncr_no, "ncr_type": info.ncr_type.value, "value": str(amount)},
            )
        return info

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def _get(self, ncr_id: UUID, lock: bool = False) -> NCR:
        stmt = select(NCR).where(NCR.id == ncr_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        ncr = self._session.execute(stmt).scalar_one_or_none()
        if ncr is None:
            raise EntityNotFoundError("NCR", str(ncr_id))
        return ncr

    def transition(
        self,
        ncr_id: UUID,
        new_status: NCRStatus,
        actor_id: UUID,
        notes: str | None = None,
    ) -> NCRInfo:
        """
        Move an NCR to ``new_status`` and commit.

        Raises:
            InvalidNCRTransitionError: The workflow has no such move.
        """
        target = NCRStatus(new_status).value
        with atomic(self._session, "ncr_transition"):
            ncr = self._get(ncr_id, lock=True)
            previous = ncr.status
            if NCR_WORKFLOW.find_to(previous, target) is None:
                logger.warning(
                    "ncr_transition_rejected",
                    extra={"ncr_no": ncr.ncr_no, "from_status": previous, "to_status": target},
                )
                raise InvalidNCRTransitionError(ncr.ncr_no, previous, target)

            now = self._clock.now()
            ncr.status = target
            ncr.updated_by_id = actor_id
            if target == NCRStatus.SENT.value:
                ncr.sent_at = now
            if target in _RESOLUTIONS:
                ncr.resolution = _RESOLUTIONS[target]
                ncr.resolved_at = now
            if notes:
                ncr.resolution_notes = notes
            self._session.flush()
            info = ncr_to_info(ncr)

        logger.info(
            "ncr_status_changed",
            extra={
                "ncr_no": info.ncr_no,
                "from_status": previous,
                "to_status": target,
                "actor_id": str(actor_id),
            },
        )
        return info

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_ncr(self, ncr_id: UUID) -> NCRInfo:
        return ncr_to_info(self._get(ncr_id))

    def list_ncrs(
        self,
        period_id: UUID | None = None,
        location_id: UUID | None = None,
        status: NCRStatus | None = None,
        delivery_id: UUID | None = None,
    ) -> list[NCRInfo]:
        stmt = select(NCR)
        if period_id is not None:
            stmt = stmt.where(NCR.period_id == period_id)
        if location_id is not None:
            stmt = stmt.where(NCR.location_id == location_id)
        if status is not None:
            stmt = stmt.where(NCR.status == NCRStatus(status).value)
        if delivery_id is not None:
            stmt = stmt.where(NCR.delivery_id == delivery_id)
        return [ncr_to_info(n) for n in self._session.execute(stmt.order_by(NCR.ncr_no)).scalars()]

    def summarize(self, period_id: UUID, location_id: UUID) -> NCRSummary:
        """
        NCR value per outcome bucket.

        credited: CREDITED, or CLOSED with resolution "credit".
        losses:   REJECTED, or CLOSED with resolution "loss".
        pending:  SENT, awaiting the supplier.
        open:     OPEN, not yet sent.
        CLOSED NCRs without a resolution (closed straight from OPEN) are
        left out.
        """
        totals = {"credited": [ZERO, 0], "losses": [ZERO, 0], "pending": [ZERO, 0], "open": [ZERO, 0]}
        ncrs = self._session.execute(
            select(NCR).where(NCR.period_id == period_id, NCR.location_id == location_id)
        ).scalars()
        for ncr in ncrs:
            bucket = _bucket(ncr)
            if bucket is None:
                continue
            totals[bucket][0] += ncr.value
            totals[bucket][1] += 1

        return NCRSummary(
            credited_value=round_value(totals["credited"][0]),
            credited_count=totals["credited"][1],
            losses_value=round_value(totals["losses"][0]),
            losses_count=totals["losses"][1],
            pending_value=round_value(totals["pending"][0]),
            pending_count=totals["pending"][1],
            open_value=round_value(totals["open"][0]),
            open_count=totals["open"][1],
        )


def _bucket(ncr: NCR) -> str | None:
    if ncr.status == NCRStatus.CREDITED.value or ncr.resolution == "credit":
        return "credited"
    if ncr.status == NCRStatus.REJECTED.value or ncr.resolution == "loss":
        return "losses"
    if ncr.status == NCRStatus.SENT.value:
        return "pending"
    if ncr.status == NCRStatus.OPEN.value:
        return "open"
    return None
