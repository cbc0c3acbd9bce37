"""
Module: stock_kernel.db.immutability
Responsibility: ORM-level enforcement of append-only and frozen records.
    Rejects UPDATE/DELETE of posted documents, period snapshots, closed
    periods and ledger rows of closed periods, plus any change to the
    ``code`` of an item, location or supplier.
Architecture position: Kernel > DB.  Registered once at start-up (or by the
    test harness) via register_immutability_listeners().

Invariants enforced:
    - Deliveries, issues and their lines are immutable once posted;
      corrections are new documents.
    - A COMPLETED or REJECTED transfer never changes again.
    - PeriodSnapshot rows are never updated or deleted.
    - A CLOSED period accepts no further field changes, and ledger rows
      belonging to it accept no further writes.
    - Master-data codes are immutable.
    - updated_at / updated_by_id are audit metadata and always allowed.

Failure modes:
    - ImmutabilityViolationError raised from inside flush(); the caller's
      transaction must be rolled back.
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from stock_kernel.domain.dtos import PeriodStatus, TransferStatus
from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _AUDIT_FIELDS and insp.attrs[attr.key].history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str, **fields) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


# =============================================================================
# Posted documents
# =============================================================================


def _check_posted_document_update(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        entity_type = type(target).__name__
        _block(
            entity_type,
            target,
            "UPDATE",
            f"Posted {entity_type} records are immutable (changed: {', '.join(changed)})",
            fields=changed,
        )


def _check_posted_document_delete(mapper, connection, target):
    entity_type = type(target).__name__
    _block(entity_type, target, "DELETE", f"Posted {entity_type} records cannot be deleted")


# =============================================================================
# Transfers
# =============================================================================

_TERMINAL_TRANSFER_STATUSES = frozenset(
    {TransferStatus.COMPLETED.value, TransferStatus.REJECTED.value}
)


def _check_transfer_update(mapper, connection, target):
    history = get_history(target, "status")
    previous = history.deleted[0] if history.deleted else target.status
    previous = getattr(previous, "value", previous)
    if previous in _TERMINAL_TRANSFER_STATUSES and _changed_fields(target):
        _block(
            "Transfer",
            target,
            "UPDATE",
            f"Transfer in terminal status {previous} cannot be modified",
        )


# =============================================================================
# Snapshots
# =============================================================================


def _check_snapshot_update(mapper, connection, target):
    if _changed_fields(target):
        _block("PeriodSnapshot", target, "UPDATE", "Period snapshots are immutable")


def _check_snapshot_delete(mapper, connection, target):
    _block("PeriodSnapshot", target, "DELETE", "Period snapshots cannot be deleted")


# =============================================================================
# Closed periods
# =============================================================================


def _check_period_update(mapper, connection, target):
    """
    A CLOSED period is frozen.

    The transition into CLOSED itself is allowed (status, closed_at and
    closed_by_id change in the same flush); anything after that is not.
    """
    history = get_history(target, "status")
    if history.deleted:
        previous = getattr(history.deleted[0], "value", history.deleted[0])
    else:
        previous = getattr(target.status, "value", target.status)

    if previous == PeriodStatus.CLOSED.value:
        changed = _changed_fields(target)
        if changed:
            _block(
                "Period",
                target,
                "UPDATE",
                f"Cannot modify field '{changed[0]}' on closed period",
                fields=changed,
            )


def _check_period_delete(mapper, connection, target):
    if getattr(target.status, "value", target.status) != PeriodStatus.DRAFT.value:
        _block("Period", target, "DELETE", "Only DRAFT periods can be deleted")


def _check_ledger_entry_update(mapper, connection, target):
    from stock_kernel.models.period import Period

    status = connection.execute(
        select(Period.__table__.c.status).where(Period.__table__.c.id == str(target.period_id))
    ).scalar_one_or_none()
    if status == PeriodStatus.CLOSED.value:
        _block(
            "StockLedgerEntry",
            target,
            "UPDATE",
            "Stock ledger rows of a closed period cannot change",
            period_id=str(target.period_id),
        )


def _check_ledger_entry_delete(mapper, connection, target):
    _block("StockLedgerEntry", target, "DELETE", "Stock ledger rows are never deleted")


# =============================================================================
# Master data codes
# =============================================================================


def _check_code_immutability(mapper, connection, target):
    history = get_history(target, "code")
    if history.deleted and history.added and history.deleted[0] != history.added[0]:
        _block(
            type(target).__name__,
            target,
            "UPDATE",
            f"Code cannot change ({history.deleted[0]} -> {history.added[0]})",
        )


def _check_master_data_delete(mapper, connection, target):
    _block(
        type(target).__name__,
        target,
        "DELETE",
        "Master data is deactivated, never deleted",
    )


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from stock_kernel.models.documents import (
        Delivery,
        DeliveryLine,
        Issue,
        IssueLine,
        Transfer,
    )
    from stock_kernel.models.master_data import Item, Location, Supplier
    from stock_kernel.models.period import Period
    from stock_kernel.models.stock_ledger import PeriodSnapshot, StockLedgerEntry

    table = []
    for model in (Delivery, DeliveryLine, Issue, IssueLine):
        table.append((model, "before_update", _check_posted_document_update))
        table.append((model, "before_delete", _check_posted_document_delete))
    table.append((Transfer, "before_update", _check_transfer_update))
    table.append((PeriodSnapshot, "before_update", _check_snapshot_update))
    table.append((PeriodSnapshot, "before_delete", _check_snapshot_delete))
    table.append((Period, "before_update", _check_period_update))
    table.append((Period, "before_delete", _check_period_delete))
    table.append((StockLedgerEntry, "before_update", _check_ledger_entry_update))
    table.append((StockLedgerEntry, "before_delete", _check_ledger_entry_delete))
    for model in (Item, Location, Supplier):
        table.append((model, "before_update", _check_code_immutability))
        table.append((model, "before_delete", _check_master_data_delete))
    return table


def register_immutability_listeners() -> None:
    """
    Register all immutability listeners.

    Call once after the models are importable and before any writes.
    Safe to call twice.
    """
    for model, event_name, fn in _listener_table():
        if not event.contains(model, event_name, fn):
            event.listen(model, event_name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the listeners.

    WARNING: only for tests that need to violate immutability on purpose.
    """
    for model, event_name, fn in _listener_table():
        if event.contains(model, event_name, fn):
            event.remove(model, event_name, fn)
