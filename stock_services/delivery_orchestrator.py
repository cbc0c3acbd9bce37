"""
stock_services.delivery_orchestrator -- Posting supplier deliveries.

Responsibility:
    Posts a delivery (goods received from a supplier at a location) as one
    atomic unit: period gate, price variance detection against the locked
    period price, WAC blending into the stock ledger, the delivery document
    itself, and an auto-generated NCR for every line whose price differs.

Architecture position:
    Services -- orchestration over kernel services and pure engines.
    Composes PeriodService, PriceBookService, StockLedgerService,
    MasterDataService, SequenceService, NCRService, VarianceDetector and
    WacCalculator.  Owns the transaction (commit / rollback).

Invariants enforced:
    - The delivery date must fall in a postable period.
    - Every line has quantity > 0 and unit_price >= 0.
    - Ledger rows are locked in sorted key order before the first write.
    - Lines are processed in input order; repeated items accumulate into
      the same ledger row.
    - A variance is looked up per line and never blocks the posting.
    - All-or-nothing: header, lines, ledger changes and NCRs commit
      together or not at all.
    - A supplier invoice reference is posted only once.

Failure modes:
    - ValidationError / DuplicateInvoiceError: bad input (permanent).
    - PeriodClosedError / PeriodNotFoundError: wrong date (permanent).
    - InactiveEntityError / EntityNotFoundError: bad master data reference.
    - ConcurrencyConflictError: transient; safe to retry the whole call.

Audit relevance:
    ``delivery_posted`` records the document number, total, line count
    and NCR count; each NCR logs ``ncr_created``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_config import StockLedgerConfig
from stock_engines.variance import VarianceResult
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.dtos import ActorContext, DeliveryLineInput
from stock_kernel.domain.values import ZERO, line_value, round_cost, round_quantity, round_value, to_decimal
from stock_kernel.exceptions import DuplicateInvoiceError, EntityNotFoundError, ValidationError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.documents import Delivery, DeliveryLine
from stock_kernel.services.sequence_service import SequenceService
from stock_services._transaction import atomic
from stock_services._types import DeliveryInfo, DeliveryLineInfo, DeliveryResult
from stock_services._wiring import KernelServices
from stock_services.ncr_service import NCRService, ncr_to_info

logger = get_logger("services.delivery")


def delivery_to_info(delivery: Delivery) -> DeliveryInfo:
    return DeliveryInfo(
        id=delivery.id,
        delivery_no=delivery.delivery_no,
        period_id=delivery.period_id,
        location_id=delivery.location_id,
        supplier_id=delivery.supplier_id,
        invoice_ref=delivery.invoice_ref,
        delivery_date=delivery.delivery_date,
        total_amount=delivery.total_amount,
        has_variance=delivery.has_variance,
        lines=tuple(
            DeliveryLineInfo(
                id=line.id,
                line_no=line.line_no,
                item_id=line.item_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_value=line.line_value,
                period_price=line.period_price,
                price_variance=line.price_variance,
                wac_before=line.wac_before,
                wac_after=line.wac_after,
            )
            for line in delivery.lines
        ),
    )


class DeliveryOrchestrator:
    """
    Posts deliveries.

    Contract:
        ``post_delivery`` returns a DeliveryResult with the posted document
        and the NCRs it raised, or raises and leaves nothing behind.
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
        self._prices = kernel.prices
        self._ledger = kernel.ledger
        self._master = kernel.master_data
        self._sequences = kernel.sequences
        self._detector = kernel.variance_detector
        self._ncrs = NCRService(session, kernel=kernel)

    def _validate_lines(self, lines: Sequence[DeliveryLineInput]) -> list[DeliveryLineInput]:
        if not lines:
            raise ValidationError("A delivery needs at least one line", field="lines")

        validated = []
        for index, line in enumerate(lines, start=1):
            quantity = to_decimal(line.quantity, f"lines[{index}].quantity")
            unit_price = to_decimal(line.unit_price, f"lines[{index}].unit_price")
            if quantity <= 0:
                raise ValidationError(
                    f"Line {index}: quantity must be positive, got {quantity}",
                    field=f"lines[{index}].quantity",
                    value=str(quantity),
                )
            if unit_price < 0:
                raise ValidationError(
                    f"Line {index}: unit price cannot be negative, got {unit_price}",
                    field=f"lines[{index}].unit_price",
                    value=str(unit_price),
                )
            validated.append(
                DeliveryLineInput(
                    item_id=line.item_id,
                    quantity=round_quantity(quantity, self._config.quantity_places),
                    unit_price=round_cost(unit_price, self._config.cost_places),
                )
            )
        return validated

    def _check_invoice_unused(self, supplier_id: UUID, invoice_ref: str) -> None:
        existing = self._session.execute(
            select(Delivery.id).where(
                Delivery.supplier_id == supplier_id,
                Delivery.invoice_ref == invoice_ref,
            )
        ).first()
        if existing is not None:
            logger.warning(
                "delivery_rejected_duplicate_invoice",
                extra={"supplier_id": str(supplier_id), "invoice_ref": invoice_ref},
            )
            raise DuplicateInvoiceError(str(supplier_id), invoice_ref)

    def post_delivery(
        self,
        ctx: ActorContext,
        location_id: UUID,
        supplier_id: UUID,
        invoice_ref: str,
        delivery_date: date,
        lines: Sequence[DeliveryLineInput],
    ) -> DeliveryResult:
        """
        Post a delivery and commit.

        Returns:
            DeliveryResult with the posted delivery and any price-variance NCRs.
        """
        if not invoice_ref or not invoice_ref.strip():
            raise ValidationError("Invoice reference is required", field="invoice_ref")
        invoice_ref = invoice_ref.strip()
        validated = self._validate_lines(lines)
        actor_id = ctx.user_id

        with LogContext.bind(actor_id=actor_id, location_id=location_id):
            with atomic(self._session, "post_delivery"):
                period = self._periods.require_postable(delivery_date)
                self._master.require_active_location(location_id)
                self._master.require_active_supplier(supplier_id)
                for line in validated:
                    self._master.require_active_item(line.item_id)
                self._check_invoice_unused(supplier_id, invoice_ref)

                delivery_no = self._sequences.next_document_number(
                    SequenceService.DELIVERY, delivery_date.year
                )
                self._ledger.lock_keys(
                    period.id, [(location_id, line.item_id) for line in validated], actor_id
                )

                period_prices = {
                    item_id: self._prices.get_price(item_id, period.id)
                    for item_id in {line.item_id for line in validated}
                }

                delivery_id = uuid4()
                delivery_lines: list[DeliveryLine] = []
                variances: list[tuple[DeliveryLine, VarianceResult]] = []
                total = ZERO

                for line_no, line in enumerate(validated, start=1):
                    period_price = period_prices[line.item_id]
                    variance = self._detector.detect(
                        item_id=line.item_id,
                        period_id=period.id,
                        quantity=line.quantity,
                        actual_unit_price=line.unit_price,
                        period_price=period_price,
                    )
                    movement = self._ledger.apply_receipt(
                        period.id, location_id, line.item_id, line.quantity, line.unit_price, actor_id
                    )
                    value = line_value(line.quantity, line.unit_price)
                    total += value

                    row = DeliveryLine(
                        id=uuid4(),
                        delivery_id=delivery_id,
                        line_no=line_no,
                        item_id=line.item_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        line_value=value,
                        period_price=period_price,
                        price_variance=(
                            round_cost(line.unit_price - period_price)
                            if period_price is not None
                            else None
                        ),
                        wac_before=movement.previous_wac,
                        wac_after=movement.new_wac,
                        created_by_id=actor_id,
                    )
                    delivery_lines.append(row)
                    if variance is not None:
                        variances.append((row, variance))

                delivery = Delivery(
                    id=delivery_id,
                    delivery_no=delivery_no,
                    period_id=period.id,
                    location_id=location_id,
                    supplier_id=supplier_id,
                    invoice_ref=invoice_ref,
                    delivery_date=delivery_date,
                    total_amount=round_value(total, self._config.value_places),
                    has_variance=bool(variances),
                    posted_at=self._clock.now(),
                    lines=delivery_lines,
                    created_by_id=actor_id,
                )
                self._session.add(delivery)
                try:
                    self._session.flush()
                except IntegrityError as exc:
                    if "invoice_ref" in str(exc.orig) or "uq_delivery_supplier_invoice" in str(exc.orig):
                        raise DuplicateInvoiceError(str(supplier_id), invoice_ref) from exc
                    raise

                with LogContext.bind(document_no=delivery_no):
                    ncrs = [
                        self._ncrs.record_price_variance(
                            variance,
                            location_id=location_id,
                            delivery_id=delivery_id,
                            delivery_line_id=row.id,
                            document_year=delivery_date.year,
                            actor_id=actor_id,
                        )
                        for row, variance in variances
                    ]

                result = DeliveryResult(
                    delivery=delivery_to_info(delivery),
                    ncrs=tuple(ncr_to_info(n) for n in ncrs),
                )

            with LogContext.bind(document_no=delivery_no, period_id=period.id):
                logger.info(
                    "delivery_posted",
                    extra={
                        "delivery_no": delivery_no,
                        "invoice_ref": invoice_ref,
                        "line_count": len(delivery_lines),
                        "total_amount": str(result.delivery.total_amount),
                        "ncr_count": result.ncr_count,
                    },
                )
        return result

    def get_delivery(self, delivery_id: UUID) -> DeliveryInfo:
        delivery = self._session.get(Delivery, delivery_id)
        if delivery is None:
            raise EntityNotFoundError("Delivery", str(delivery_id))
        return delivery_to_info(delivery)
