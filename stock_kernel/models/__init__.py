"""ORM models for the stock kernel."""

from stock_kernel.models.documents import (
    Delivery,
    DeliveryLine,
    Issue,
    IssueLine,
    Transfer,
    TransferLine,
)
from stock_kernel.models.master_data import Item, Location, Supplier
from stock_kernel.models.ncr import NCR
from stock_kernel.models.period import Period, PeriodLocation
from stock_kernel.models.price_point import PricePoint
from stock_kernel.models.reconciliation import Reconciliation
from stock_kernel.models.stock_ledger import PeriodSnapshot, StockLedgerEntry


def import_all_models() -> None:
    """Make sure every table, including the sequence counters, is on Base.metadata."""
    import stock_kernel.services.sequence_service  # noqa: F401


__all__ = [
    "Delivery",
    "DeliveryLine",
    "Issue",
    "IssueLine",
    "Item",
    "Location",
    "NCR",
    "Period",
    "PeriodLocation",
    "PeriodSnapshot",
    "PricePoint",
    "Reconciliation",
    "StockLedgerEntry",
    "Supplier",
    "Transfer",
    "TransferLine",
    "import_all_models",
]
