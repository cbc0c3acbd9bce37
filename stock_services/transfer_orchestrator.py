"""
stock_services.transfer_orchestrator -- Inter-location stock transfers.

Responsibility:
    Creates, submits, approves and rejects transfers.  Stock moves only on
    approval: the source is debited at its current WAC and the destination
    receives the same quantity priced at that WAC, blended like a delivery.

Architecture position:
    Services -- orchestration over PeriodService, MasterDataService,
    StockLedgerService and SequenceService.  Transition rules come from
    TRANSFER_WORKFLOW.  Owns the transaction.

Invariants enforced:
    - Source and destination differ.
    - Submission runs a soft availability check (no locks); approval
      re-checks every line on locked rows before any row moves.
    - Ledger rows of both locations are locked in one sorted pass.
    - COMPLETED and REJECTED are terminal.  A rejected transfer is
      recreated, never resubmitted.
    - A pending or rejected transfer has no effect on either ledger.
    - Transfer-in never creates a price variance NCR.

Failure modes:
    - SameLocationTransferError, ValidationError: bad input.
    - InvalidTransferTransitionError: action not allowed in current status.
    - SelfApprovalError: approver is the requester (configurable).
    - InsufficientStockError: source short at submission or approval.
    - PeriodClosedError: the transfer date is no longer postable.

Audit relevance:
    ``transfer_created``, ``transfer_submitted``, ``transfer_completed`` and
    ``transfer_rejected`` carry the transfer number and actor.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config import StockLedgerConfig
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.dtos import ActorContext, StockLineInput, TransferStatus
from stock_kernel.domain.values import ZERO, line_value, round_value
from stock_kernel.exceptions import (
    EntityNotFoundError,
    InvalidTransferTransitionError,
    SameLocationTransferError,
    SelfApprovalError,
    ValidationError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.documents import Transfer, TransferLine
from stock_kernel.services.sequence_service import SequenceService
from stock_services._transaction import atomic
from stock_services._types import TransferInfo, TransferLineInfo
from stock_services._wiring import KernelServices
from stock_services.issue_orchestrator import aggregate_requests, validate_stock_lines
from stock_services.workflows import TRANSFER_WORKFLOW, Transition

logger = get_logger("services.transfer")


def transfer_to_info(transfer: Transfer) -> TransferInfo:
    return TransferInfo(
        id=transfer.id,
        transfer_no=transfer.transfer_no,
        period_id=transfer.period_id,
        from_location_id=transfer.from_location_id,
        to_location_id=transfer.to_location_id,
        transfer_date=transfer.transfer_date,
        status=TransferStatus(transfer.status),
        requested_by_id=transfer.requested_by_id,
        approved_by_id=transfer.approved_by_id,
        approved_at=transfer.approved_at,
        rejected_by_id=transfer.rejected_by_id,
        rejection_reason=transfer.rejection_reason,
        total_value=transfer.total_value,
        lines=tuple(
            TransferLineInfo(
                id=line.id,
                line_no=line.line_no,
                item_id=line.item_id,
                quantity=line.quantity,
                unit_cost=line.unit_cost,
                line_value=line.line_value,
            )
            for line in transfer.lines
        ),
    )


class TransferOrchestrator:
    """
    Transfer lifecycle: DRAFT -> PENDING_APPROVAL -> COMPLETED | REJECTED.
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
        self._master = kernel.master_data
        self._sequences = kernel.sequences

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, transfer_id: UUID, lock: bool = False) -> Transfer:
        stmt = select(Transfer).where(Transfer.id == transfer_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        transfer = self._session.execute(stmt).scalar_one_or_none()
        if transfer is None:
            raise EntityNotFoundError("Transfer", str(transfer_id))
        return transfer

    def _transition(self, transfer: Transfer, action: str) -> Transition:
        transition = TRANSFER_WORKFLOW.find(transfer.status, action)
        if transition is None:
            logger.warning(
                "transfer_transition_rejected",
                extra={
                    "transfer_no": transfer.transfer_no,
                    "status": transfer.status,
                    "action": action,
                },
            )
            raise InvalidTransferTransitionError(transfer.transfer_no, transfer.status, action)
        return transition

    def _submit(self, transfer: Transfer, actor_id: UUID) -> None:
        transition = self._transition(transfer, "submit")
        requests = aggregate_requests(
            [StockLineInput(item_id=line.item_id, quantity=line.quantity) for line in transfer.lines]
        )
        # Soft check only; approval re-validates on locked rows
        self._ledger.require_available(transfer.period_id, transfer.from_location_id, requests)

        transfer.status = transition.to_state
        transfer.submitted_at = self._clock.now()
        transfer.updated_by_id = actor_id
        self._session.flush()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_transfer(
        self,
        ctx: ActorContext,
        from_location_id: UUID,
        to_location_id: UUID,
        transfer_date: date,
        lines: Sequence[StockLineInput],
        notes: str | None = None,
        submit: bool = True,
    ) -> TransferInfo:
        """
        Create a transfer and commit.

        With ``submit`` (the default) the transfer goes straight to
        PENDING_APPROVAL after the soft availability check; otherwise it is
        left as DRAFT.  No stock moves either way.
        """
        if from_location_id == to_location_id:
            raise SameLocationTransferError(str(from_location_id))
        validated = validate_stock_lines(lines, self._config.quantity_places)
        actor_id = ctx.user_id

        with LogContext.bind(actor_id=actor_id, location_id=from_location_id):
            with atomic(self._session, "create_transfer"):
                period = self._periods.require_postable(transfer_date)
                self._master.require_active_location(from_location_id)
                self._master.require_active_location(to_location_id)
                for line in validated:
                    self._master.require_active_item(line.item_id)

                transfer = Transfer(
                    id=uuid4(),
                    transfer_no=self._sequences.next_document_number(
                        SequenceService.TRANSFER, transfer_date.year
                    ),
                    period_id=period.id,
                    from_location_id=from_location_id,
                    to_location_id=to_location_id,
                    transfer_date=transfer_date,
                    status=TRANSFER_WORKFLOW.initial_state,
                    requested_by_id=actor_id,
                    notes=notes,
                    lines=[
                        TransferLine(
                            id=uuid4(),
                            line_no=line_no,
                            item_id=line.item_id,
                            quantity=line.quantity,
                            created_by_id=actor_id,
                        )
                        for line_no, line in enumerate(validated, start=1)
                    ],
                    created_by_id=actor_id,
                )
                self._session.add(transfer)
                self._session.flush()
                logger.info(
                    "transfer_created",
                    extra={
                        "transfer_no": transfer.transfer_no,
                        "to_location_id": str(to_location_id),
                        "line_count": len(validated),
                    },
                )

                if submit:
                    self._submit(transfer, actor_id)
                    logger.info("transfer_submitted", extra={"transfer_no": transfer.transfer_no})
                info = transfer_to_info(transfer)
        return info

    def submit(self, ctx: ActorContext, transfer_id: UUID) -> TransferInfo:
        """DRAFT -> PENDING_APPROVAL, after the soft availability check."""
        with LogContext.bind(actor_id=ctx.user_id):
            with atomic(self._session, "submit_transfer"):
                transfer = self._get(transfer_id, lock=True)
                self._periods.require_postable(transfer.transfer_date)
                self._submit(transfer, ctx.user_id)
                info = transfer_to_info(transfer)
            logger.info("transfer_submitted", extra={"transfer_no": info.transfer_no})
        return info

    def approve(self, ctx: ActorContext, transfer_id: UUID) -> TransferInfo:
        """
        PENDING_APPROVAL -> COMPLETED, moving the stock.

        Every line is re-checked against the locked source rows before the
        first debit; a shortfall on any line fails the whole transfer.

        Stock moves in the period of the transfer date, which must still be
        postable.  A transfer left PENDING_APPROVAL when its period closes
        can no longer be approved (PeriodClosedError); reject it and raise a
        new transfer dated in the open period.
        """
        actor_id = ctx.user_id
        with LogContext.bind(actor_id=actor_id):
            with atomic(self._session, "approve_transfer"):
                transfer = self._get(transfer_id, lock=True)
                transition = self._transition(transfer, "approve")
                if self._config.forbid_self_approval and transfer.requested_by_id == actor_id:
                    logger.warning(
                        "transfer_self_approval_rejected",
                        extra={"transfer_no": transfer.transfer_no},
                    )
                    raise SelfApprovalError(transfer.transfer_no, str(actor_id))

                period = self._periods.require_postable(transfer.transfer_date)
                source, destination = transfer.from_location_id, transfer.to_location_id
                self._master.require_active_location(source)
                self._master.require_active_location(destination)

                keys = []
                for line in transfer.lines:
                    keys.append((source, line.item_id))
                    keys.append((destination, line.item_id))
                self._ledger.lock_keys(period.id, keys, actor_id)

                requests = aggregate_requests(
                    [StockLineInput(item_id=line.item_id, quantity=line.quantity) for line in transfer.lines]
                )
                self._ledger.require_available(period.id, source, requests)

                total = ZERO
                for line in transfer.lines:
                    out = self._ledger.apply_transfer_out(
                        period.id, source, line.item_id, line.quantity, actor_id
                    )
                    self._ledger.apply_transfer_in(
                        period.id, destination, line.item_id, line.quantity, out.unit_cost, actor_id
                    )
                    line.unit_cost = out.unit_cost
                    line.line_value = line_value(line.quantity, out.unit_cost)
                    line.updated_by_id = actor_id
                    total += line.line_value

                transfer.status = transition.to_state
                transfer.approved_by_id = actor_id
                transfer.approved_at = self._clock.now()
                transfer.total_value = round_value(total, self._config.value_places)
                transfer.updated_by_id = actor_id
                self._session.flush()
                info = transfer_to_info(transfer)

            logger.info(
                "transfer_completed",
                extra={
                    "transfer_no": info.transfer_no,
                    "from_location_id": str(info.from_location_id),
                    "to_location_id": str(info.to_location_id),
                    "total_value": str(info.total_value),
                },
            )
        return info

    def reject(self, ctx: ActorContext, transfer_id: UUID, reason: str) -> TransferInfo:
        """PENDING_APPROVAL -> REJECTED.  No stock moves; the reason is mandatory."""
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", field="reason")

        with LogContext.bind(actor_id=ctx.user_id):
            with atomic(self._session, "reject_transfer"):
                transfer = self._get(transfer_id, lock=True)
                transition = self._transition(transfer, "reject")
                transfer.status = transition.to_state
                transfer.rejected_by_id = ctx.user_id
                transfer.rejected_at = self._clock.now()
                transfer.rejection_reason = reason.strip()
                transfer.updated_by_id = ctx.user_id
                self._session.flush()
                info = transfer_to_info(transfer)

            logger.info(
                "transfer_rejected",
                extra={"transfer_no": info.transfer_no, "reason": info.rejection_reason},
            )
        return info

    def get_transfer(self, transfer_id: UUID) -> TransferInfo:
        return transfer_to_info(self._get(transfer_id))

    def list_transfers(
        self,
        period_id: UUID | None = None,
        status: TransferStatus | None = None,
    ) -> list[TransferInfo]:
        stmt = select(Transfer)
        if period_id is not None:
            stmt = stmt.where(Transfer.period_id == period_id)
        if status is not None:
            stmt = stmt.where(Transfer.status == TransferStatus(status).value)
        return [transfer_to_info(t) for t in self._session.execute(stmt.order_by(Transfer.transfer_no)).scalars()]
