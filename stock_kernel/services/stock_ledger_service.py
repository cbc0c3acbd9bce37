"""
StockLedgerService -- the only writer of stock ledger rows.

Responsibility:
    Holds the (period, location, item) -> (on_hand, wac) rows and applies
    the four stock movements to them: receipt, issue, transfer out and
    transfer in.  Orchestrators never assign on_hand or wac themselves.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the Delivery, Issue and Transfer orchestrators and by the
    period close coordinator (carry-forward seeding).

Invariants enforced:
    - Every read-modify-write runs against a row held with
      ``SELECT ... FOR UPDATE``; two movements on the same key serialise.
    - Multi-line callers pre-lock their keys through ``lock_keys`` in a
      fixed (location, item) order, so two transactions never wait on each
      other in opposite order.
    - on_hand never goes negative; the check happens on the locked row in
      the same transaction as the write.
    - Issues and transfer-outs never change WAC; receipts and transfer-ins
      blend through the injected WAC calculator.
    - Flush-only: never commits or rolls back.

Failure modes:
    - InsufficientStockError: issue or transfer-out larger than on_hand.
    - ValidationError: non-positive quantity or negative unit cost.
    - IntegrityError on concurrent lazy creation is absorbed by a savepoint
      and the row is re-read under lock.

Audit relevance:
    Every movement logs location, item, quantity and the before/after
    quantity and WAC.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.dtos import (
    LedgerMovement,
    MovementType,
    StockPosition,
    StockRequest,
    StockShortfall,
)
from stock_kernel.domain.values import ZERO, round_quantity, round_value, to_decimal
from stock_kernel.exceptions import InsufficientStockError, ValidationError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.master_data import Item, Location
from stock_kernel.models.stock_ledger import StockLedgerEntry
from stock_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")

LedgerKey = tuple[UUID, UUID]


class ReceiptCosting(Protocol):
    """What the ledger needs from a WAC calculator (stock_engines.wac.WacCalculator)."""

    quantity_places: int
    value_places: int

    def receipt(self, current_qty, current_wac, incoming_qty, incoming_unit_price): ...


def _key_order(key: LedgerKey) -> tuple[str, str]:
    return str(key[0]), str(key[1])


class StockLedgerService(BaseService[StockLedgerEntry]):
    """
    Locked stock ledger mutations.

    Contract:
        Movement methods return frozen ``LedgerMovement`` results; read
        methods return ``StockPosition`` DTOs.  ``get_or_create`` and
        ``lock_keys`` hand back locked ORM rows for use inside the caller's
        transaction only.
    """

    def __init__(self, session: Session, wac_calculator: ReceiptCosting):
        super().__init__(session)
        self._wac = wac_calculator

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    @staticmethod
    def _to_position(entry: StockLedgerEntry) -> StockPosition:
        return StockPosition(
            period_id=entry.period_id,
            location_id=entry.location_id,
            item_id=entry.item_id,
            on_hand=entry.on_hand,
            wac=entry.wac,
        )

    def _lock(self, period_id: UUID, location_id: UUID, item_id: UUID) -> StockLedgerEntry | None:
        return self.session.execute(
            select(StockLedgerEntry)
            .where(
                StockLedgerEntry.period_id == period_id,
                StockLedgerEntry.location_id == location_id,
                StockLedgerEntry.item_id == item_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_or_create(
        self,
        period_id: UUID,
        location_id: UUID,
        item_id: UUID,
        actor_id: UUID,
    ) -> StockLedgerEntry:
        """
        Lock the ledger row for the key, creating a zero row on first use.

        The returned row stays locked until the caller's transaction ends.
        """
        entry = self._lock(period_id, location_id, item_id)
        if entry is not None:
            return entry

        savepoint = self.session.begin_nested()
        try:
            entry = StockLedgerEntry(
                period_id=period_id,
                location_id=location_id,
                item_id=item_id,
                on_hand=ZERO,
                wac=ZERO,
                created_by_id=actor_id,
            )
            self.session.add(entry)
            self.session.flush()
            savepoint.commit()
            logger.debug(
                "stock_ledger_row_created",
                extra={"location_id": str(location_id), "item_id": str(item_id)},
            )
            return entry
        except IntegrityError:
            # Another transaction created the row first
            savepoint.rollback()
            logger.debug(
                "stock_ledger_create_race_retry",
                extra={"location_id": str(location_id), "item_id": str(item_id)},
            )
            entry = self._lock(period_id, location_id, item_id)
            if entry is None:
                raise
            return entry

    def lock_keys(
        self,
        period_id: UUID,
        keys: Iterable[LedgerKey],
        actor_id: UUID,
    ) -> dict[LedgerKey, StockLedgerEntry]:
        """Lock (creating where missing) every (location, item) key, in sorted order."""
        locked: dict[LedgerKey, StockLedgerEntry] = {}
        for key in sorted(set(keys), key=_key_order):
            locked[key] = self.get_or_create(period_id, key[0], key[1], actor_id)
        return locked

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _positive_quantity(self, quantity, item_id: UUID) -> Decimal:
        qty = to_decimal(quantity, "quantity")
        if qty <= 0:
            raise ValidationError(
                f"Quantity must be positive for item {item_id}: {qty}",
                field="quantity",
                value=str(qty),
            )
        return round_quantity(qty, self._wac.quantity_places)

    def _shortfall(self, item_id: UUID, requested: Decimal, available: Decimal) -> StockShortfall:
        item = self.session.get(Item, item_id)
        return StockShortfall(
            item_id=item_id,
            item_code=item.code if item is not None else str(item_id),
            item_name=item.name if item is not None else str(item_id),
            unit=item.unit if item is not None else "",
            requested=requested,
            available=available,
        )

    def _insufficient(self, location_id: UUID, shortfalls: list[StockShortfall]) -> InsufficientStockError:
        location = self.session.get(Location, location_id)
        location_code = location.code if location is not None else str(location_id)
        logger.warning(
            "insufficient_stock",
            extra={
                "location_id": str(location_id),
                "location_code": location_code,
                "items": [s.item_code for s in shortfalls],
                "requested": [str(s.requested) for s in shortfalls],
                "available": [str(s.available) for s in shortfalls],
            },
        )
        return InsufficientStockError(str(location_id), location_code, shortfalls)

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    def _receive(
        self,
        movement_type: MovementType,
        period_id: UUID,
        location_id: UUID,
        item_id: UUID,
        quantity,
        unit_cost,
        actor_id: UUID,
    ) -> LedgerMovement:
        qty = self._positive_quantity(quantity, item_id)
        cost = to_decimal(unit_cost, "unit_cost")
        if cost < 0:
            raise ValidationError(
                f"Unit cost cannot be negative for item {item_id}: {cost}",
                field="unit_price",
                value=str(cost),
            )

        entry = self.get_or_create(period_id, location_id, item_id, actor_id)
        previous_qty, previous_wac = entry.on_hand, entry.wac

        result = self._wac.receipt(
            current_qty=previous_qty,
            current_wac=previous_wac,
            incoming_qty=qty,
            incoming_unit_price=cost,
        )
        entry.on_hand = result.new_qty
        entry.wac = result.new_wac
        entry.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            f"stock_{movement_type.value}_applied",
            extra={
                "location_id": str(location_id),
                "item_id": str(item_id),
                "quantity": str(qty),
                "unit_cost": str(cost),
                "previous_qty": str(previous_qty),
                "previous_wac": str(previous_wac),
                "new_qty": str(result.new_qty),
                "new_wac": str(result.new_wac),
            },
        )
        return LedgerMovement(
            movement_type=movement_type,
            location_id=location_id,
            item_id=item_id,
            quantity=qty,
            unit_cost=cost,
            previous_qty=previous_qty,
            previous_wac=previous_wac,
            new_qty=result.new_qty,
            new_wac=result.new_wac,
        )

    def _deduct(
        self,
        movement_type: MovementType,
        period_id: UUID,
        location_id: UUID,
        item_id: UUID,
        quantity,
        actor_id: UUID,
    ) -> LedgerMovement:
        qty = self._positive_quantity(quantity, item_id)

        entry = self._lock(period_id, location_id, item_id)
        available = entry.on_hand if entry is not None else ZERO
        if entry is None or qty > entry.on_hand:
            raise self._insufficient(location_id, [self._shortfall(item_id, qty, available)])

        previous_qty = entry.on_hand
        new_qty = round_quantity(previous_qty - qty, self._wac.quantity_places)
        entry.on_hand = new_qty
        entry.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            f"stock_{movement_type.value}_applied",
            extra={
                "location_id": str(location_id),
                "item_id": str(item_id),
                "quantity": str(qty),
                "previous_qty": str(previous_qty),
                "new_qty": str(new_qty),
                "wac": str(entry.wac),
            },
        )
        return LedgerMovement(
            movement_type=movement_type,
            location_id=location_id,
            item_id=item_id,
            quantity=qty,
            unit_cost=entry.wac,
            previous_qty=previous_qty,
            previous_wac=entry.wac,
            new_qty=new_qty,
            new_wac=entry.wac,
        )

    def apply_receipt(
        self,
        period_id: UUID,
        location_id: UUID,
        item_id: UUID,
        quantity: Decimal,
        unit_price: Decimal,
        actor_id: UUID,
    ) -> LedgerMovement:
        """Supplier delivery: add stock and blend the price into WAC."""
        return self._receive(
            MovementType.RECEIPT, period_id, location_id, item_id, quantity, unit_price, actor_id
        )

    def apply_issue(
        self,
        period_id: UUID,
        location_id: UUID,
        item_id: UUID,
        quantity: Decimal,
        actor_id: UUID,
    ) -> LedgerMovement:
        """
        Consume stock at the current WAC; WAC is left as it is.

        Raises:
            InsufficientStockError: quantity exceeds on_hand.
        """
        return self._deduct(MovementType.ISSUE, period_id, location_id, item_id, quantity, actor_id)

    def apply_transfer_out(
        self,
        period_id: UUID,
        location_id: UUID,
        item_id: UUID,
        quantity: Decimal,
        actor_id: UUID,
    ) -> LedgerMovement:
        """
        Debit the source of a transfer.

        ``unit_cost`` of the result is the source WAC, the price the
        destination receives the stock at.
        """
        return self._deduct(
            MovementType.TRANSFER_OUT, period_id, location_id, item_id, quantity, actor_id
        )

    def apply_transfer_in(
        self,
        period_id: UUID,
        location_id: UUID,
        item_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal,
        actor_id: UUID,
    ) -> LedgerMovement:
        """Credit the destination of a transfer at the source WAC.  Never checked for variance."""
        return self._receive(
            MovementType.TRANSFER_IN, period_id, location_id, item_id, quantity, unit_cost, actor_id
        )

    def seed_opening(
        self,
        period_id: UUID,
        location_id: UUID,
        item_id: UUID,
        on_hand: Decimal,
        wac: Decimal,
        actor_id: UUID,
    ) -> StockPosition:
        """
        Create the opening row of a period from a prior closing snapshot.

        Quantity and WAC are carried over unchanged.
        """
        entry = StockLedgerEntry(
            period_id=period_id,
            location_id=location_id,
            item_id=item_id,
            on_hand=on_hand,
            wac=wac,
            created_by_id=actor_id,
        )
        self.session.add(entry)
        self.session.flush()
        return self._to_position(entry)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entry(self, period_id: UUID, location_id: UUID, item_id: UUID) -> StockPosition | None:
        entry = self.session.execute(
            select(StockLedgerEntry).where(
                StockLedgerEntry.period_id == period_id,
                StockLedgerEntry.location_id == location_id,
                StockLedgerEntry.item_id == item_id,
            )
        ).scalar_one_or_none()
        return self._to_position(entry) if entry is not None else None

    def list_entries(self, period_id: UUID, location_id: UUID | None = None) -> list[StockPosition]:
        stmt = select(StockLedgerEntry).where(StockLedgerEntry.period_id == period_id)
        if location_id is not None:
            stmt = stmt.where(StockLedgerEntry.location_id == location_id)
        stmt = stmt.order_by(StockLedgerEntry.location_id, StockLedgerEntry.item_id)
        return [self._to_position(e) for e in self.session.execute(stmt).scalars()]

    def location_value(self, period_id: UUID, location_id: UUID) -> Decimal:
        """Sum of on_hand x wac over the location's rows, at value precision."""
        total = ZERO
        for position in self.list_entries(period_id, location_id):
            total += position.on_hand * position.wac
        return round_value(total, self._wac.value_places)

    def check_availability(
        self,
        period_id: UUID,
        location_id: UUID,
        requests: Iterable[StockRequest],
    ) -> list[StockShortfall]:
        """
        Soft availability check without locks.

        A missing ledger row counts as zero on hand.  Used at transfer
        submission and for early feedback; the authoritative check happens
        on the locked row at mutation time.
        """
        shortfalls: list[StockShortfall] = []
        for request in requests:
            position = self.get_entry(period_id, location_id, request.item_id)
            available = position.on_hand if position is not None else ZERO
            if request.quantity > available:
                shortfalls.append(self._shortfall(request.item_id, request.quantity, available))
        return shortfalls

    def require_available(
        self,
        period_id: UUID,
        location_id: UUID,
        requests: Iterable[StockRequest],
    ) -> None:
        """
        Raise InsufficientStockError listing every request that cannot be met.

        Callers lock the keys first (``lock_keys``) when the check must hold
        until commit.
        """
        shortfalls = self.check_availability(period_id, location_id, requests)
        if shortfalls:
            raise self._insufficient(location_id, shortfalls)
