"""
StockLedgerConfig schema.

The typed, frozen form of a ledger configuration file.  YAML documents are
parsed into this by the loader; services receive it (or individual fields
of it) as constructor arguments and never read files or the environment
themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from typing import Any


@dataclass(frozen=True)
class StockLedgerConfig:
    """Policy knobs of the stock ledger."""

    config_id: str = "default"
    version: int = 1

    # Rounding (ROUND_HALF_UP everywhere)
    quantity_places: int = 4
    cost_places: int = 4
    value_places: int = 2

    # Zero means every non-zero price difference raises an NCR
    variance_threshold_percent: Decimal = Decimal("0")
    variance_threshold_amount: Decimal = Decimal("0")

    # Period lifecycle
    block_posting_when_pending_close: bool = False
    open_next_period_on_close: bool = True
    copy_prices_on_roll_forward: bool = True

    # Transfers
    forbid_self_approval: bool = True

    max_retry_attempts: int = 3
    currency: str = "SAR"
    database_url: str | None = None

    def __post_init__(self) -> None:
        for name in ("quantity_places", "cost_places", "value_places"):
            places = getattr(self, name)
            if isinstance(places, bool) or not isinstance(places, int) or not 0 <= places <= 9:
                raise ValueError(f"{name} must be an integer between 0 and 9, got {places!r}")
        for name in ("variance_threshold_percent", "variance_threshold_amount"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                raise ValueError(f"{name} must be a Decimal, got {type(value).__name__}")
            if value < 0:
                raise ValueError(f"{name} cannot be negative: {value}")
        if self.max_retry_attempts < 1:
            raise ValueError(f"max_retry_attempts must be at least 1: {self.max_retry_attempts}")
        if len(self.currency) != 3:
            raise ValueError(f"currency must be a 3-letter code: {self.currency!r}")

    @classmethod
    def with_defaults(cls) -> StockLedgerConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StockLedgerConfig:
        """
        Build from a parsed YAML mapping.

        Unknown keys are rejected so a typo never silently falls back to
        a default.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

        values = dict(data)
        for name in ("variance_threshold_percent", "variance_threshold_amount"):
            if name in values:
                values[name] = _parse_decimal(name, values[name])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            result[f.name] = str(value) if isinstance(value, Decimal) else value
        return result


def _parse_decimal(name: str, raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise ValueError(f"{name} must be a number, got {raw!r}")
    try:
        # str() first so YAML floats such as 2.5 keep their written digits
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"{name} is not a number: {raw!r}") from exc
