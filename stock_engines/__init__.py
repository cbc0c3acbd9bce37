"""
Module: stock_engines
Responsibility:
    Re-exports the pure calculation engines: weighted average cost,
    delivery price variance, and period consumption.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel.domain (and sibling engine modules).
    MUST NOT import stock_services.

Invariants enforced:
    - Engines never read the clock; dates and times are parameters.
    - Decimal-only arithmetic.
    - Identical inputs always produce identical outputs.

Audit relevance:
    Engine calls are traced via ``@traced_engine`` (stock_engines.tracer),
    which emits STOCK_ENGINE_TRACE log records.
"""

from stock_engines.reconciliation import (
    ConsumptionInput,
    ConsumptionResult,
    MandayCostResult,
    calculate_consumption,
    calculate_manday_cost,
    calculate_reconciliation,
)
from stock_engines.variance import VarianceDetector, VarianceResult, build_ncr_reason
from stock_engines.wac import WacCalculator, WacResult, compute_wac

__all__ = [
    "ConsumptionInput",
    "ConsumptionResult",
    "MandayCostResult",
    "VarianceDetector",
    "VarianceResult",
    "WacCalculator",
    "WacResult",
    "build_ncr_reason",
    "calculate_consumption",
    "calculate_manday_cost",
    "calculate_reconciliation",
    "compute_wac",
]
