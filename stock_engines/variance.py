"""
stock_engines.variance -- Delivery price variance against the period price.

Responsibility:
    Classify a delivery line's actual unit price against the locked
    expected price of its period and decide whether the difference is worth
    a non-conformance report.  Also renders the NCR reason text.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The delivery orchestrator looks the period price up and writes the NCR;
    this module only decides.

Algorithm:
    1. No period price -> no result (a missing price is not a delivery error).
    2. delta = actual - period_price; zero delta -> no result.
    3. percent = delta / period_price * 100, or 100 when the period price
       is zero (any positive price against a zero baseline).
    4. total_impact = delta * quantity.
    5. Thresholds (strictly greater-than) may suppress small variances.
       Both default to zero, meaning every non-zero delta is reported.

Invariants enforced:
    - Decimal only; identical inputs give identical outputs.
    - unit delta rounded to 4 dp, percent and total impact to 2 dp,
      all ROUND_HALF_UP.

Failure modes:
    - ValueError for quantity <= 0 or negative prices (programming errors:
      the orchestrator validates lines first).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from stock_engines.tracer import traced_engine
from stock_kernel.domain.values import ZERO, round_cost, round_value, to_decimal

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class VarianceResult:
    """
    A reportable price variance on one delivery line.

    ``absolute_delta`` is the signed per-unit difference (actual minus
    period price); ``total_impact`` is that difference times the quantity.
    """

    item_id: UUID
    period_id: UUID
    quantity: Decimal
    period_price: Decimal
    actual_price: Decimal
    absolute_delta: Decimal
    percent_delta: Decimal
    total_impact: Decimal

    @property
    def is_increase(self) -> bool:
        return self.absolute_delta > 0

    @property
    def direction(self) -> str:
        return "increase" if self.is_increase else "decrease"

    @property
    def ncr_value(self) -> Decimal:
        """Money at stake, always positive."""
        return abs(self.total_impact)


class VarianceDetector:
    """
    Pure price-variance classifier.

    Contract:
        No I/O, no database access, fully deterministic.

    Non-goals:
        - Does NOT create NCRs (DeliveryOrchestrator does).
        - Does NOT look up prices.
    """

    def __init__(
        self,
        threshold_percent: Decimal = ZERO,
        threshold_amount: Decimal = ZERO,
    ):
        self.threshold_percent = to_decimal(threshold_percent, "threshold_percent")
        self.threshold_amount = to_decimal(threshold_amount, "threshold_amount")
        if self.threshold_percent < 0 or self.threshold_amount < 0:
            raise ValueError("Variance thresholds cannot be negative")

    def _exceeds_threshold(self, percent: Decimal, impact: Decimal) -> bool:
        has_percent = self.threshold_percent > 0
        has_amount = self.threshold_amount > 0
        if not has_percent and not has_amount:
            return True
        if has_percent and abs(percent) > self.threshold_percent:
            return True
        return has_amount and abs(impact) > self.threshold_amount

    @traced_engine(
        "variance",
        "1.0",
        fingerprint_fields=("item_id", "period_id", "quantity", "actual_unit_price", "period_price"),
    )
    def detect(
        self,
        item_id: UUID,
        period_id: UUID,
        quantity: Decimal,
        actual_unit_price: Decimal,
        period_price: Decimal | None,
    ) -> VarianceResult | None:
        """
        Compare a delivery line to its period price.

        Returns:
            VarianceResult when the line differs from the period price by
            more than the thresholds, otherwise None.
        """
        if period_price is None:
            return None

        quantity = to_decimal(quantity, "quantity")
        actual = to_decimal(actual_unit_price, "actual_unit_price")
        expected = to_decimal(period_price, "period_price")
        if quantity <= 0:
            raise ValueError(f"quantity must be positive: {quantity}")
        if actual < 0 or expected < 0:
            raise ValueError("Prices cannot be negative")

        delta = actual - expected
        if delta == 0:
            return None

        if expected > 0:
            percent = delta / expected * _HUNDRED
        else:
            percent = _HUNDRED
        impact = delta * quantity

        if not self._exceeds_threshold(percent, impact):
            return None

        return VarianceResult(
            item_id=item_id,
            period_id=period_id,
            quantity=quantity,
            period_price=expected,
            actual_price=actual,
            absolute_delta=round_cost(delta),
            percent_delta=round_value(percent),
            total_impact=round_value(impact),
        )


def build_ncr_reason(
    variance: VarianceResult,
    item_name: str,
    item_code: str,
    currency: str = "SAR",
) -> str:
    """Multi-line reason text stored on an auto-generated price variance NCR."""
    return (
        "Automatic NCR for price variance detected on delivery.\n\n"
        f"Item: {item_name} ({item_code})\n"
        f"Quantity: {variance.quantity}\n"
        f"Expected Price (Period): {currency} {round_cost(variance.period_price)}\n"
        f"Actual Price (Delivery): {currency} {round_cost(variance.actual_price)}\n"
        f"Variance: {currency} {variance.absolute_delta} "
        f"({variance.percent_delta}% {variance.direction})\n"
        f"Total Variance Amount: {currency} {variance.total_impact}\n\n"
        "This NCR was automatically generated due to price difference from "
        "period-locked price."
    )
