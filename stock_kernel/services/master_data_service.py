"""
Service layer for master data: items, locations and suppliers.

Create and soft-deactivate only.  Codes never change and rows are never
deleted, so historical documents and snapshots keep valid references.
Returns frozen DTOs instead of ORM entities.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stock_kernel.domain.dtos import LocationType, Unit
from stock_kernel.exceptions import (
    DuplicateCodeError,
    EntityNotFoundError,
    InactiveEntityError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.master_data import Item, Location, Supplier
from stock_kernel.services.base import BaseService

logger = get_logger("services.master_data")


@dataclass(frozen=True)
class ItemInfo:
    id: UUID
    code: str
    name: str
    unit: Unit
    category: str | None
    is_active: bool


@dataclass(frozen=True)
class LocationInfo:
    id: UUID
    code: str
    name: str
    location_type: LocationType
    is_active: bool


@dataclass(frozen=True)
class SupplierInfo:
    id: UUID
    code: str
    name: str
    email: str | None
    is_active: bool


class MasterDataService(BaseService[Item]):
    """
    Create, look up and deactivate items, locations and suppliers.

    ``require_active_*`` helpers are what the orchestrators call: they
    resolve an id and fail with InactiveEntityError for deactivated rows.
    """

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def _item_dto(self, item: Item) -> ItemInfo:
        return ItemInfo(
            id=item.id,
            code=item.code,
            name=item.name,
            unit=Unit(item.unit),
            category=item.category,
            is_active=item.is_active,
        )

    def _location_dto(self, location: Location) -> LocationInfo:
        return LocationInfo(
            id=location.id,
            code=location.code,
            name=location.name,
            location_type=LocationType(location.location_type),
            is_active=location.is_active,
        )

    def _supplier_dto(self, supplier: Supplier) -> SupplierInfo:
        return SupplierInfo(
            id=supplier.id,
            code=supplier.code,
            name=supplier.name,
            email=supplier.email,
            is_active=supplier.is_active,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, model, entity_id: UUID):
        row = self.session.get(model, entity_id)
        if row is None:
            raise EntityNotFoundError(model.__name__, str(entity_id))
        return row

    def _insert(self, row, entity_type: str) -> None:
        if not row.code or not row.code.strip():
            raise ValidationError(f"{entity_type} code is required", field="code")
        existing = self.session.execute(
            select(type(row)).where(type(row).code == row.code)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateCodeError(entity_type, row.code)

        savepoint = self.session.begin_nested()
        try:
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise DuplicateCodeError(entity_type, row.code) from exc

        logger.info(
            "master_data_created",
            extra={"entity_type": entity_type, "code": row.code},
        )

    def _deactivate(self, row, actor_id: UUID) -> None:
        if row.is_active:
            row.is_active = False
            row.updated_by_id = actor_id
            self.session.flush()
            logger.info(
                "master_data_deactivated",
                extra={
                    "entity_type": type(row).__name__,
                    "code": row.code,
                    "actor_id": str(actor_id),
                },
            )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def create_item(
        self,
        code: str,
        name: str,
        actor_id: UUID,
        unit: Unit = Unit.EA,
        category: str | None = None,
    ) -> ItemInfo:
        item = Item(
            code=code,
            name=name,
            unit=Unit(unit).value,
            category=category,
            is_active=True,
            created_by_id=actor_id,
        )
        self._insert(item, "Item")
        return self._item_dto(item)

    def get_item(self, item_id: UUID) -> ItemInfo:
        return self._item_dto(self._get(Item, item_id))

    def require_active_item(self, item_id: UUID) -> ItemInfo:
        item = self._get(Item, item_id)
        if not item.is_active:
            raise InactiveEntityError("Item", str(item_id), item.code)
        return self._item_dto(item)

    def list_items(self, active_only: bool = True) -> list[ItemInfo]:
        stmt = select(Item)
        if active_only:
            stmt = stmt.where(Item.is_active.is_(True))
        return [self._item_dto(i) for i in self.session.execute(stmt.order_by(Item.code)).scalars()]

    def deactivate_item(self, item_id: UUID, actor_id: UUID) -> ItemInfo:
        item = self._get(Item, item_id)
        self._deactivate(item, actor_id)
        return self._item_dto(item)

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def create_location(
        self,
        code: str,
        name: str,
        actor_id: UUID,
        location_type: LocationType = LocationType.KITCHEN,
    ) -> LocationInfo:
        location = Location(
            code=code,
            name=name,
            location_type=LocationType(location_type).value,
            is_active=True,
            created_by_id=actor_id,
        )
        self._insert(location, "Location")
        return self._location_dto(location)

    def get_location(self, location_id: UUID) -> LocationInfo:
        return self._location_dto(self._get(Location, location_id))

    def require_active_location(self, location_id: UUID) -> LocationInfo:
        location = self._get(Location, location_id)
        if not location.is_active:
            raise InactiveEntityError("Location", str(location_id), location.code)
        return self._location_dto(location)

    def list_locations(self, active_only: bool = True) -> list[LocationInfo]:
        stmt = select(Location)
        if active_only:
            stmt = stmt.where(Location.is_active.is_(True))
        return [
            self._location_dto(loc)
            for loc in self.session.execute(stmt.order_by(Location.code)).scalars()
        ]

    def deactivate_location(self, location_id: UUID, actor_id: UUID) -> LocationInfo:
        location = self._get(Location, location_id)
        self._deactivate(location, actor_id)
        return self._location_dto(location)

    # ------------------------------------------------------------------
    # Suppliers
    # ------------------------------------------------------------------

    def create_supplier(
        self,
        code: str,
        name: str,
        actor_id: UUID,
        email: str | None = None,
    ) -> SupplierInfo:
        supplier = Supplier(
            code=code,
            name=name,
            email=email,
            is_active=True,
            created_by_id=actor_id,
        )
        self._insert(supplier, "Supplier")
        return self._supplier_dto(supplier)

    def get_supplier(self, supplier_id: UUID) -> SupplierInfo:
        return self._supplier_dto(self._get(Supplier, supplier_id))

    def require_active_supplier(self, supplier_id: UUID) -> SupplierInfo:
        supplier = self._get(Supplier, supplier_id)
        if not supplier.is_active:
            raise InactiveEntityError("Supplier", str(supplier_id), supplier.code)
        return self._supplier_dto(supplier)

    def deactivate_supplier(self, supplier_id: UUID, actor_id: UUID) -> SupplierInfo:
        supplier = self._get(Supplier, supplier_id)
        self._deactivate(supplier, actor_id)
        return self._supplier_dto(supplier)
