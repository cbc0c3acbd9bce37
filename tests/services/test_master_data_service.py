"""
Tests for MasterDataService.

Covers:
- Creating items, locations and suppliers
- Duplicate and blank codes
- Deactivation and the active checks used by the orchestrators
- Code immutability
"""

from uuid import uuid4

import pytest

from stock_kernel.domain.dtos import LocationType, Unit
from stock_kernel.exceptions import (
    DuplicateCodeError,
    EntityNotFoundError,
    ImmutabilityViolationError,
    InactiveEntityError,
    ValidationError,
)
from stock_kernel.models.master_data import Item


class TestCreate:
    def test_create_item(self, kernel, test_actor_id):
        item = kernel.master_data.create_item("RICE", "Basmati rice", test_actor_id, Unit.KG, "Dry goods")

        assert item.code == "RICE"
        assert item.unit == Unit.KG
        assert item.category == "Dry goods"
        assert item.is_active
        assert kernel.master_data.get_item(item.id) == item

    def test_item_unit_defaults_to_each(self, kernel, test_actor_id):
        assert kernel.master_data.create_item("EGG", "Egg", test_actor_id).unit == Unit.EA

    def test_create_location_and_supplier(self, kernel, test_actor_id):
        location = kernel.master_data.create_location("WH", "Warehouse", test_actor_id, LocationType.WAREHOUSE)
        supplier = kernel.master_data.create_supplier("S9", "Dairy Co", test_actor_id, "sales@dairy.example")

        assert location.location_type == LocationType.WAREHOUSE
        assert supplier.email == "sales@dairy.example"

    def test_duplicate_code(self, kernel, test_actor_id):
        kernel.master_data.create_item("RICE", "Basmati rice", test_actor_id)
        with pytest.raises(DuplicateCodeError) as exc_info:
            kernel.master_data.create_item("RICE", "Other rice", test_actor_id)
        assert exc_info.value.entity_code == "RICE"

    def test_blank_code(self, kernel, test_actor_id):
        with pytest.raises(ValidationError):
            kernel.master_data.create_location("  ", "Nowhere", test_actor_id)

    def test_unknown_id(self, kernel):
        with pytest.raises(EntityNotFoundError):
            kernel.master_data.get_supplier(uuid4())


class TestDeactivation:
    def test_deactivated_item_fails_active_check(self, kernel, test_actor_id):
        item = kernel.master_data.create_item("SALT", "Salt", test_actor_id)
        kernel.master_data.deactivate_item(item.id, test_actor_id)

        with pytest.raises(InactiveEntityError) as exc_info:
            kernel.master_data.require_active_item(item.id)
        assert exc_info.value.entity_code == "SALT"

    def test_list_hides_inactive_by_default(self, kernel, restaurant, test_actor_id):
        kernel.master_data.deactivate_location(restaurant.store.id, test_actor_id)

        codes = [loc.code for loc in kernel.master_data.list_locations()]
        assert codes == ["KIT"]
        assert len(kernel.master_data.list_locations(active_only=False)) == 2

    def test_inactive_supplier(self, kernel, restaurant, test_actor_id):
        kernel.master_data.deactivate_supplier(restaurant.supplier.id, test_actor_id)
        with pytest.raises(InactiveEntityError):
            kernel.master_data.require_active_supplier(restaurant.supplier.id)


class TestCodeImmutability:
    def test_code_cannot_change(self, session, restaurant):
        item = session.get(Item, restaurant.flour.id)
        item.code = "FLOUR-2"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_name_can_change(self, session, restaurant):
        item = session.get(Item, restaurant.flour.id)
        item.name = "Flour 25kg (strong)"
        session.flush()
        assert session.get(Item, restaurant.flour.id).name == "Flour 25kg (strong)"

    def test_master_data_cannot_be_deleted(self, session, restaurant):
        session.delete(session.get(Item, restaurant.oil.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
