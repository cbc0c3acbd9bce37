"""
stock_engines.wac -- Weighted average cost blending.

Responsibility:
    Compute the new weighted average cost of an item at a location when a
    receipt (supplier delivery or transfer-in) arrives.  Issues and
    transfer-outs never come here; they only read the current WAC.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Imports only stock_kernel.domain.values.
    Consumed by StockLedgerService.apply_receipt / apply_transfer_in.

Formula:
    new_wac = (current_qty * current_wac + incoming_qty * incoming_price)
              / (current_qty + incoming_qty)

Invariants enforced:
    - Decimal arithmetic only; floats are rejected.
    - new_wac is rounded ROUND_HALF_UP to 4 decimal places.
    - current_qty == 0 yields the incoming price exactly, whatever WAC is
      stored on the empty row.
    - Identical inputs give identical outputs; no clock or state.

Failure modes:
    - ValueError for incoming_qty <= 0 or any negative input.  These are
      programming errors: orchestrators validate line quantities first and
      the ledger never holds negative stock.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from stock_engines.tracer import traced_engine
from stock_kernel.domain.values import (
    COST_PLACES,
    QUANTITY_PLACES,
    VALUE_PLACES,
    ZERO,
    round_cost,
    round_quantity,
    round_value,
    to_decimal,
)


@dataclass(frozen=True)
class WacResult:
    """Outcome of blending one receipt into a ledger position."""

    new_qty: Decimal
    new_wac: Decimal
    current_value: Decimal
    receipt_value: Decimal
    new_value: Decimal

    @property
    def value_change(self) -> Decimal:
        return self.new_value - self.current_value


def _validate(
    current_qty: Decimal,
    current_wac: Decimal,
    incoming_qty: Decimal,
    incoming_unit_price: Decimal,
) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    current_qty = to_decimal(current_qty, "current_qty")
    current_wac = to_decimal(current_wac, "current_wac")
    incoming_qty = to_decimal(incoming_qty, "incoming_qty")
    incoming_unit_price = to_decimal(incoming_unit_price, "incoming_unit_price")

    if current_qty < 0:
        raise ValueError(f"current_qty cannot be negative: {current_qty}")
    if current_wac < 0:
        raise ValueError(f"current_wac cannot be negative: {current_wac}")
    if incoming_qty <= 0:
        raise ValueError(f"incoming_qty must be positive: {incoming_qty}")
    if incoming_unit_price < 0:
        raise ValueError(f"incoming_unit_price cannot be negative: {incoming_unit_price}")
    return current_qty, current_wac, incoming_qty, incoming_unit_price


def compute_wac(
    current_qty: Decimal,
    current_wac: Decimal,
    incoming_qty: Decimal,
    incoming_unit_price: Decimal,
    places: int = COST_PLACES,
) -> Decimal:
    """
    Blend an incoming receipt into the current WAC.

    Returns:
        The new WAC at ``places`` decimals (ROUND_HALF_UP).

    Raises:
        ValueError: incoming_qty <= 0 or a negative input.
    """
    current_qty, current_wac, incoming_qty, incoming_unit_price = _validate(
        current_qty, current_wac, incoming_qty, incoming_unit_price
    )

    if current_qty == 0:
        return round_cost(incoming_unit_price, places)

    total_value = current_qty * current_wac + incoming_qty * incoming_unit_price
    return round_cost(total_value / (current_qty + incoming_qty), places)


class WacCalculator:
    """
    Pure WAC calculator with configurable precision.

    Contract:
        No I/O, no database access, fully deterministic.
    """

    def __init__(
        self,
        quantity_places: int = QUANTITY_PLACES,
        cost_places: int = COST_PLACES,
        value_places: int = VALUE_PLACES,
    ):
        self.quantity_places = quantity_places
        self.cost_places = cost_places
        self.value_places = value_places

    @traced_engine(
        "wac",
        "1.0",
        fingerprint_fields=("current_qty", "current_wac", "incoming_qty", "incoming_unit_price"),
    )
    def receipt(
        self,
        current_qty: Decimal,
        current_wac: Decimal,
        incoming_qty: Decimal,
        incoming_unit_price: Decimal,
    ) -> WacResult:
        """New quantity, new WAC and the values either side of the receipt."""
        current_qty, current_wac, incoming_qty, incoming_unit_price = _validate(
            current_qty, current_wac, incoming_qty, incoming_unit_price
        )
        new_wac = compute_wac(
            current_qty, current_wac, incoming_qty, incoming_unit_price, self.cost_places
        )
        new_qty = round_quantity(current_qty + incoming_qty, self.quantity_places)
        return WacResult(
            new_qty=new_qty,
            new_wac=new_wac,
            current_value=round_value(current_qty * current_wac, self.value_places),
            receipt_value=round_value(incoming_qty * incoming_unit_price, self.value_places),
            new_value=round_value(new_qty * new_wac, self.value_places),
        )

    def preview(
        self,
        current_qty: Decimal,
        current_wac: Decimal,
        incoming_qty: Decimal,
        incoming_unit_price: Decimal,
    ) -> Decimal:
        """WAC a receipt would produce, without tracing (UI previews)."""
        return compute_wac(
            current_qty, current_wac, incoming_qty, incoming_unit_price, self.cost_places
        )

    def receipt_value_impact(
        self,
        current_qty: Decimal,
        current_wac: Decimal,
        incoming_qty: Decimal,
        incoming_unit_price: Decimal,
    ) -> Decimal:
        """
        Change in WAC caused by the receipt.

        Positive when the receipt is dearer than the stock it joins.
        """
        current_wac = to_decimal(current_wac, "current_wac")
        new_wac = self.preview(current_qty, current_wac, incoming_qty, incoming_unit_price)
        if to_decimal(current_qty, "current_qty") == 0:
            return ZERO
        return new_wac - current_wac
