"""
stock_services.issue_orchestrator -- Posting stock issues.

Responsibility:
    Posts an issue (stock consumed by a location against a cost centre) at
    the current WAC.  Availability is checked for every line before any
    ledger row moves, so an issue either posts in full or not at all.

Architecture position:
    Services -- orchestration over PeriodService, MasterDataService,
    StockLedgerService and SequenceService.  Owns the transaction.

Invariants enforced:
    - Quantities are summed per item before the availability check, so two
      lines of the same item cannot together overdraw the row.
    - Stock never goes negative.
    - WAC is unchanged by an issue; each line records the WAC it was
      valued at.
    - Issues never create NCRs.

Failure modes:
    - InsufficientStockError listing every short item; nothing is posted.
    - ValidationError for an unknown cost centre or non-positive quantity.
    - PeriodClosedError / PeriodNotFoundError for the issue date.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from stock_config import StockLedgerConfig
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.dtos import ActorContext, CostCentre, StockLineInput, StockRequest
from stock_kernel.domain.values import ZERO, line_value, round_quantity, round_value, to_decimal
from stock_kernel.exceptions import EntityNotFoundError, ValidationError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.documents import Issue, IssueLine
from stock_kernel.services.sequence_service import SequenceService
from stock_services._transaction import atomic
from stock_services._types import IssueInfo, IssueLineInfo, IssueResult
from stock_services._wiring import KernelServices

logger = get_logger("services.issue")


def validate_stock_lines(lines: Sequence[StockLineInput], places: int) -> list[StockLineInput]:
    """Check and round the lines of an issue or transfer."""
    if not lines:
        raise ValidationError("At least one line is required", field="lines")
    validated = []
    for index, line in enumerate(lines, start=1):
        quantity = to_decimal(line.quantity, f"lines[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(
                f"Line {index}: quantity must be positive, got {quantity}",
                field=f"lines[{index}].quantity",
                value=str(quantity),
            )
        validated.append(StockLineInput(item_id=line.item_id, quantity=round_quantity(quantity, places)))
    return validated


def aggregate_requests(lines: Sequence[StockLineInput]) -> list[StockRequest]:
    """Sum quantities per item, keeping the line numbers for error reporting."""
    totals: dict[UUID, list] = {}
    for line_no, line in enumerate(lines, start=1):
        entry = totals.setdefault(line.item_id, [ZERO, []])
        entry[0] += line.quantity
        entry[1].append(line_no)
    return [
        StockRequest(item_id=item_id, quantity=qty, line_numbers=tuple(numbers))
        for item_id, (qty, numbers) in totals.items()
    ]


def issue_to_info(issue: Issue) -> IssueInfo:
    return IssueInfo(
        id=issue.id,
        issue_no=issue.issue_no,
        period_id=issue.period_id,
        location_id=issue.location_id,
        cost_centre=CostCentre(issue.cost_centre),
        issue_date=issue.issue_date,
        total_value=issue.total_value,
        lines=tuple(
            IssueLineInfo(
                id=line.id,
                line_no=line.line_no,
                item_id=line.item_id,
                quantity=line.quantity,
                wac_at_issue=line.wac_at_issue,
                line_value=line.line_value,
            )
            for line in issue.lines
        ),
    )


class IssueOrchestrator:
    """Posts issues of stock to cost centres."""

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
        self._master = kernel.master_data
        self._sequences = kernel.sequences

    def post_issue(
        self,
        ctx: ActorContext,
        location_id: UUID,
        cost_centre: CostCentre | str,
        issue_date: date,
        lines: Sequence[StockLineInput],
    ) -> IssueResult:
        """
        Post an issue and commit.

        Raises:
            InsufficientStockError: One or more items are short; the error
                lists each with requested and available quantity.
        """
        try:
            centre = CostCentre(cost_centre)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown cost centre: {cost_centre}", field="cost_centre", value=str(cost_centre)
            ) from exc
        validated = validate_stock_lines(lines, self._config.quantity_places)
        actor_id = ctx.user_id

        with LogContext.bind(actor_id=actor_id, location_id=location_id):
            with atomic(self._session, "post_issue"):
                period = self._periods.require_postable(issue_date)
                self._master.require_active_location(location_id)
                for line in validated:
                    self._master.require_active_item(line.item_id)

                self._ledger.lock_keys(
                    period.id, [(location_id, line.item_id) for line in validated], actor_id
                )
                self._ledger.require_available(period.id, location_id, aggregate_requests(validated))

                issue_no = self._sequences.next_document_number(SequenceService.ISSUE, issue_date.year)
                issue_lines: list[IssueLine] = []
                total = ZERO
                for line_no, line in enumerate(validated, start=1):
                    movement = self._ledger.apply_issue(
                        period.id, location_id, line.item_id, line.quantity, actor_id
                    )
                    value = line_value(movement.quantity, movement.unit_cost)
                    total += value
                    issue_lines.append(
                        IssueLine(
                            id=uuid4(),
                            line_no=line_no,
                            item_id=line.item_id,
                            quantity=movement.quantity,
                            wac_at_issue=movement.unit_cost,
                            line_value=value,
                            created_by_id=actor_id,
                        )
                    )

                issue = Issue(
                    issue_no=issue_no,
                    period_id=period.id,
                    location_id=location_id,
                    cost_centre=centre.value,
                    issue_date=issue_date,
                    total_value=round_value(total, self._config.value_places),
                    posted_at=self._clock.now(),
                    lines=issue_lines,
                    created_by_id=actor_id,
                )
                self._session.add(issue)
                self._session.flush()
                result = IssueResult(issue=issue_to_info(issue))

            logger.info(
                "issue_posted",
                extra={
                    "issue_no": issue_no,
                    "period_id": str(period.id),
                    "cost_centre": centre.value,
                    "line_count": len(issue_lines),
                    "total_value": str(result.issue.total_value),
                },
            )
        return result

    def get_issue(self, issue_id: UUID) -> IssueInfo:
        issue = self._session.get(Issue, issue_id)
        if issue is None:
            raise EntityNotFoundError("Issue", str(issue_id))
        return issue_to_info(issue)
