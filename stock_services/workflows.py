"""
Stock document workflows.

State machines for transfers and non-conformance reports.  The
orchestrators look transitions up here instead of hard-coding status
checks, so the allowed moves live in one declarative table.
"""

from dataclasses import dataclass

from stock_kernel.domain.dtos import NCRStatus, TransferStatus
from stock_kernel.logging_config import get_logger

logger = get_logger("services.workflows")


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def find(self, from_state: str, action: str) -> Transition | None:
        for transition in self.transitions:
            if transition.from_state == from_state and transition.action == action:
                return transition
        return None

    def find_to(self, from_state: str, to_state: str) -> Transition | None:
        for transition in self.transitions:
            if transition.from_state == from_state and transition.to_state == to_state:
                return transition
        return None


# -----------------------------------------------------------------------------
# Transfer Workflow
# -----------------------------------------------------------------------------

TRANSFER_WORKFLOW = Workflow(
    name="stock_transfer",
    description="Inter-location stock transfer",
    initial_state=TransferStatus.DRAFT.value,
    states=tuple(s.value for s in TransferStatus),
    transitions=(
        Transition(TransferStatus.DRAFT.value, TransferStatus.PENDING_APPROVAL.value, action="submit"),
        # Approval moves the stock and completes in the same transaction
        Transition(TransferStatus.PENDING_APPROVAL.value, TransferStatus.COMPLETED.value, action="approve"),
        Transition(TransferStatus.PENDING_APPROVAL.value, TransferStatus.REJECTED.value, action="reject"),
    ),
)


# -----------------------------------------------------------------------------
# NCR Workflow
# -----------------------------------------------------------------------------

NCR_WORKFLOW = Workflow(
    name="ncr",
    description="Non-conformance report follow-up with the supplier",
    initial_state=NCRStatus.OPEN.value,
    states=tuple(s.value for s in NCRStatus),
    transitions=(
        Transition(NCRStatus.OPEN.value, NCRStatus.SENT.value, action="send"),
        Transition(NCRStatus.OPEN.value, NCRStatus.CLOSED.value, action="close"),
        Transition(NCRStatus.SENT.value, NCRStatus.CREDITED.value, action="credit"),
        Transition(NCRStatus.SENT.value, NCRStatus.REJECTED.value, action="reject"),
        Transition(NCRStatus.CREDITED.value, NCRStatus.CLOSED.value, action="close"),
        Transition(NCRStatus.REJECTED.value, NCRStatus.CLOSED.value, action="close"),
    ),
)

logger.debug(
    "stock_workflows_registered",
    extra={
        "workflows": [TRANSFER_WORKFLOW.name, NCR_WORKFLOW.name],
        "transition_count": len(TRANSFER_WORKFLOW.transitions) + len(NCR_WORKFLOW.transitions),
    },
)
