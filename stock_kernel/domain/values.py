"""
Decimal precision policy for quantities, unit costs and values.

Responsibility:
    One place that decides how numbers are rounded in the ledger, so the
    WAC engine, the stock ledger and the orchestrators cannot drift apart.

Policy:
    - Quantities and unit costs (including WAC): 4 decimal places.
    - Monetary values (line values, totals, snapshot values): 2 places.
    - Rounding mode is ROUND_HALF_UP everywhere, never banker's rounding.
    - Binary floats are rejected outright; callers pass Decimal, int or str.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

QUANTITY_PLACES = 4
COST_PLACES = 4
VALUE_PLACES = 2

ZERO = Decimal("0")


def _quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def to_decimal(value: Decimal | int | str, field: str = "value") -> Decimal:
    """Coerce to Decimal without ever passing through float."""
    if isinstance(value, bool):
        raise TypeError(f"{field} must be a decimal number, got bool")
    if isinstance(value, float):
        raise TypeError(f"{field} must not be a float: use Decimal or str")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"{field} is not a decimal number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{field} must be finite, got {value!r}")
    return result


def round_quantity(value: Decimal, places: int = QUANTITY_PLACES) -> Decimal:
    return value.quantize(_quantum(places), rounding=ROUND_HALF_UP)


def round_cost(value: Decimal, places: int = COST_PLACES) -> Decimal:
    return value.quantize(_quantum(places), rounding=ROUND_HALF_UP)


def round_value(value: Decimal, places: int = VALUE_PLACES) -> Decimal:
    return value.quantize(_quantum(places), rounding=ROUND_HALF_UP)


def line_value(quantity: Decimal, unit_cost: Decimal) -> Decimal:
    """Extended value of a line: qty x unit cost at value precision."""
    return round_value(quantity * unit_cost)
