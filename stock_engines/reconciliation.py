"""
stock_engines.reconciliation -- Period consumption and manday cost.

Responsibility:
    Turn one location's stock value movements over a period into the
    consumption figure and the cost per manday used when a location
    confirms its reconciliation before close.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    ReconciliationService (stock_services) gathers the inputs.

Formulas:
    total_adjustments = back_charges - credits - condemnations + adjustments
    consumption       = opening + receipts + transfers_in - transfers_out
                        - closing + total_adjustments
    manday_cost       = consumption / total_mandays

Invariants enforced:
    - Opening, receipts, transfers and closing are non-negative.
    - Results are rounded ROUND_HALF_UP to 2 dp.
    - total_mandays must be positive.

Failure modes:
    - ValueError for negative stock movement values or mandays <= 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from stock_engines.tracer import traced_engine
from stock_kernel.domain.values import ZERO, round_value, to_decimal


@dataclass(frozen=True)
class ConsumptionInput:
    opening_stock: Decimal
    receipts: Decimal
    transfers_in: Decimal
    transfers_out: Decimal
    closing_stock: Decimal
    issues: Decimal = ZERO
    back_charges: Decimal = ZERO
    credits: Decimal = ZERO
    condemnations: Decimal = ZERO
    adjustments: Decimal = ZERO


@dataclass(frozen=True)
class ConsumptionResult:
    consumption: Decimal
    total_adjustments: Decimal
    # Rounded inputs, kept for the audit trail
    breakdown: dict[str, Decimal]


@dataclass(frozen=True)
class MandayCostResult:
    manday_cost: Decimal
    consumption: Decimal
    total_mandays: int


_NON_NEGATIVE = ("opening_stock", "receipts", "transfers_in", "transfers_out", "closing_stock")


@traced_engine("reconciliation", "1.0", fingerprint_fields=("data",))
def calculate_consumption(data: ConsumptionInput) -> ConsumptionResult:
    """
    Consumption of one location over one period.

    Raises:
        ValueError: A stock movement value is negative.
    """
    values = {
        name: to_decimal(getattr(data, name), name)
        for name in (
            "opening_stock",
            "receipts",
            "transfers_in",
            "transfers_out",
            "closing_stock",
            "issues",
            "back_charges",
            "credits",
            "condemnations",
            "adjustments",
        )
    }
    for name in _NON_NEGATIVE:
        if values[name] < 0:
            raise ValueError(f"{name} cannot be negative: {values[name]}")

    total_adjustments = (
        values["back_charges"]
        - values["credits"]
        - values["condemnations"]
        + values["adjustments"]
    )
    consumption = (
        values["opening_stock"]
        + values["receipts"]
        + values["transfers_in"]
        - values["transfers_out"]
        - values["closing_stock"]
        + total_adjustments
    )

    return ConsumptionResult(
        consumption=round_value(consumption),
        total_adjustments=round_value(total_adjustments),
        breakdown={name: round_value(value) for name, value in values.items()},
    )


def calculate_manday_cost(consumption: Decimal, total_mandays: int) -> MandayCostResult:
    """
    Cost per person-day.

    Raises:
        ValueError: total_mandays <= 0.
    """
    consumption = to_decimal(consumption, "consumption")
    if isinstance(total_mandays, bool) or not isinstance(total_mandays, int):
        raise ValueError(f"total_mandays must be an integer: {total_mandays!r}")
    if total_mandays <= 0:
        raise ValueError(f"total_mandays must be greater than zero: {total_mandays}")

    return MandayCostResult(
        manday_cost=round_value(consumption / Decimal(total_mandays)),
        consumption=round_value(consumption),
        total_mandays=total_mandays,
    )


def calculate_reconciliation(
    data: ConsumptionInput,
    total_mandays: int,
) -> tuple[ConsumptionResult, MandayCostResult]:
    consumption = calculate_consumption(data)
    return consumption, calculate_manday_cost(consumption.consumption, total_mandays)
