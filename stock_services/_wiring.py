"""
stock_services._wiring -- Kernel service container.

Responsibility:
    Creates every kernel service and engine the orchestrators need exactly
    once per session, configured from one StockLedgerConfig, and exposes
    them as attributes.

Architecture position:
    Services -- the single place where kernel services and engines are
    constructed.  Orchestrators receive a KernelServices instead of
    building their own, so every orchestrator sharing a session also
    shares the same PeriodService, StockLedgerService and clock.

Invariants enforced:
    - Single-instance lifecycle within one container.
    - The WAC calculator and the stock ledger use the same precision.
    - Without an explicit config the container resolves
      ``get_active_config()``, so ``STOCK_LEDGER_CONFIG`` and the packaged
      ``sets/default.yaml`` apply to every orchestrator built from a bare
      session.
    - Whole-call retries use ``max_retry_attempts`` from the same config.

Non-goals:
    - Does NOT manage transaction boundaries.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session

from stock_config import StockLedgerConfig, get_active_config
from stock_engines.variance import VarianceDetector
from stock_engines.wac import WacCalculator
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.services.master_data_service import MasterDataService
from stock_kernel.services.period_service import PeriodService
from stock_kernel.services.price_book_service import PriceBookService
from stock_kernel.services.retry_service import run_with_retry
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_ledger_service import StockLedgerService

T = TypeVar("T")


class KernelServices:
    """Kernel services and engines bound to one session."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockLedgerConfig | None = None,
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.config = config or get_active_config()

        # Engines
        self.wac = WacCalculator(
            quantity_places=self.config.quantity_places,
            cost_places=self.config.cost_places,
            value_places=self.config.value_places,
        )
        self.variance_detector = VarianceDetector(
            threshold_percent=self.config.variance_threshold_percent,
            threshold_amount=self.config.variance_threshold_amount,
        )

        # Kernel services
        self.sequences = SequenceService(session)
        self.master_data = MasterDataService(session)
        self.periods = PeriodService(
            session,
            self.clock,
            block_posting_when_pending_close=self.config.block_posting_when_pending_close,
        )
        self.prices = PriceBookService(session, self.clock, default_currency=self.config.currency)
        self.ledger = StockLedgerService(session, self.wac)

    def retry(self, fn: Callable[[], T], operation: str | None = None) -> T:
        """Run a whole orchestrator call, retrying transient conflicts up to ``max_retry_attempts``."""
        return run_with_retry(fn, attempts=self.config.max_retry_attempts, operation=operation)

    @classmethod
    def resolve(
        cls,
        session: Session,
        clock: Clock | None,
        config: StockLedgerConfig | None,
        kernel: KernelServices | None,
    ) -> KernelServices:
        if kernel is not None:
            return kernel
        return cls(session, clock, config)
