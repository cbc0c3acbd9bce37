"""
stock_services -- Package init and public API.

Responsibility:
    Orchestration services that compose the pure engines (stock_engines)
    with the kernel services and own the transaction of every business
    operation: deliveries, issues, transfers, NCRs, period close and
    reconciliation.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        stock_services/ -> stock_engines/  (allowed)
        stock_services/ -> stock_kernel/   (allowed)
        stock_engines/  -> stock_services/ (FORBIDDEN)
        stock_kernel/   -> stock_services/ (FORBIDDEN)

Invariants enforced:
    - Kernel services are constructed in one place (KernelServices) and
      shared by orchestrators bound to the same session.
    - Every public orchestrator method commits on success and rolls back on
      failure; callers never see a half-applied document.
"""

from stock_kernel.logging_config import get_logger

logger = get_logger("services")

from stock_services._types import (  # noqa: E402
    CloseResult,
    DeliveryInfo,
    DeliveryResult,
    IssueInfo,
    IssueResult,
    NCRInfo,
    NCRSummary,
    OpenResult,
    ReconciliationInfo,
    TransferInfo,
)
from stock_services._wiring import KernelServices  # noqa: E402
from stock_services.delivery_orchestrator import DeliveryOrchestrator  # noqa: E402
from stock_services.issue_orchestrator import IssueOrchestrator  # noqa: E402
from stock_services.ncr_service import NCRService  # noqa: E402
from stock_services.period_close_coordinator import PeriodCloseCoordinator  # noqa: E402
from stock_services.reconciliation_service import ReconciliationService  # noqa: E402
from stock_services.transfer_orchestrator import TransferOrchestrator  # noqa: E402

__all__ = [
    "CloseResult",
    "DeliveryInfo",
    "DeliveryOrchestrator",
    "DeliveryResult",
    "IssueInfo",
    "IssueOrchestrator",
    "IssueResult",
    "KernelServices",
    "NCRInfo",
    "NCRService",
    "NCRSummary",
    "OpenResult",
    "PeriodCloseCoordinator",
    "ReconciliationInfo",
    "ReconciliationService",
    "TransferInfo",
    "TransferOrchestrator",
]
