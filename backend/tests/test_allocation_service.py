"""
Driver allocation tests.

Verifies:
- Only drivers receive allocations, bounded by warehouse stock
- Allocating never moves warehouse stock
- Quantities never drop below what was sold
- Closing records leftovers and removes the allocation from availability
"""

import pytest

from distro.extensions import db
from distro.models import Product, DriverAllocation
from distro.models.allocations import ALLOCATION_ALLOCATED, ALLOCATION_RECONCILED
from distro.services import allocation_service
from distro.services.allocation_service import AllocationError, parse_allocation_items
from distro.services.stock_service import driver_available_stock, driver_stock_map
from distro.validation import NotFoundError, ValidationError


class TestParseItems:
    def test_accepts_mapping_and_list(self):
        assert parse_allocation_items({"3": 2, "4": 0}) == {3: 2}
        assert parse_allocation_items([
            {"product_id": 3, "quantity": 2},
            {"product_id": 3, "quantity": 1},
        ]) == {3: 3}

    def test_rejects_negative_quantity(self):
        with pytest.raises(ValidationError):
            parse_allocation_items({"3": -1})


class TestCreateAllocation:
    def test_creates_allocation_without_moving_stock(self, db_session, admin, driver, products):
        cola = products["cola"]

        alloc = allocation_service.create_allocation(admin, driver.id, {str(cola.id): 30}, "2026-10-17")

        assert alloc.status == ALLOCATION_ALLOCATED
        assert alloc.driver_name == "Dan Driver"
        assert alloc.date.isoformat() == "2026-10-17"
        assert alloc.allocated_items == [{"product_id": cola.id, "quantity": 30, "sold": 0}]
        assert db.session.get(Product, cola.id).stock == 100
        assert driver_available_stock(driver.id, cola.id) == 30

    def test_only_drivers(self, db_session, admin, sales_rep, products):
        with pytest.raises(AllocationError, match="not a driver"):
            allocation_service.create_allocation(admin, sales_rep.id, {str(products["cola"].id): 1})

    def test_unknown_driver(self, db_session, admin, products):
        with pytest.raises(NotFoundError):
            allocation_service.create_allocation(admin, 9999, {str(products["cola"].id): 1})

    def test_quantity_bounded_by_warehouse(self, db_session, admin, driver, products):
        water = products["water"]
        with pytest.raises(AllocationError) as exc:
            allocation_service.create_allocation(admin, driver.id, {str(water.id): 21})
        assert exc.value.details["items"][0]["available"] == 20
        assert db_session.query(DriverAllocation).count() == 0

    def test_needs_items(self, db_session, admin, driver):
        with pytest.raises(AllocationError):
            allocation_service.create_allocation(admin, driver.id, {})


class TestUpdateAllocation:
    def test_cannot_drop_below_sold(self, db_session, admin, driver, products):
        cola = products["cola"]
        alloc = allocation_service.create_allocation(admin, driver.id, {str(cola.id): 10})
        alloc.allocated_items = [{"product_id": cola.id, "quantity": 10, "sold": 6}]
        db_session.commit()

        with pytest.raises(AllocationError, match="already sold"):
            allocation_service.update_allocation(admin, alloc.id, {str(cola.id): 5})

        updated = allocation_service.update_allocation(admin, alloc.id, {str(cola.id): 6})
        assert updated.allocated_items == [{"product_id": cola.id, "quantity": 6, "sold": 6}]
        assert updated.sales_total_cents == 6 * 150

    def test_sold_product_cannot_be_removed(self, db_session, admin, driver, products):
        cola, water = products["cola"], products["water"]
        alloc = allocation_service.create_allocation(admin, driver.id, {str(cola.id): 10})
        alloc.allocated_items = [{"product_id": cola.id, "quantity": 10, "sold": 1}]
        db_session.commit()

        with pytest.raises(AllocationError):
            allocation_service.update_allocation(admin, alloc.id, {str(water.id): 5})

    def test_increase_is_checked_against_warehouse(self, db_session, admin, driver, products):
        water = products["water"]
        alloc = allocation_service.create_allocation(admin, driver.id, {str(water.id): 15})

        with pytest.raises(AllocationError):
            allocation_service.update_allocation(admin, alloc.id, {str(water.id): 40})

        updated = allocation_service.update_allocation(admin, alloc.id, {str(water.id): 20})
        assert updated.allocated_items[0]["quantity"] == 20


class TestCloseAllocation:
    def test_close_records_returns_and_stops_counting(self, db_session, admin, driver, products):
        cola, water = products["cola"], products["water"]
        alloc = allocation_service.create_allocation(admin, driver.id, {str(cola.id): 10, str(water.id): 4})
        alloc.allocated_items = [
            {"product_id": cola.id, "quantity": 10, "sold": 7},
            {"product_id": water.id, "quantity": 4, "sold": 4},
        ]
        db_session.commit()

        closed = allocation_service.close_allocation(admin, alloc.id)

        assert closed.status == ALLOCATION_RECONCILED
        assert closed.returned_items == [{"product_id": cola.id, "quantity": 3}]
        assert closed.sales_total_cents == 7 * 150 + 4 * 100
        assert driver_stock_map(driver.id) == {}
        # Returned stock is not put back in the warehouse
        assert db.session.get(Product, cola.id).stock == 100

    def test_close_twice_is_rejected(self, db_session, admin, driver, products):
        alloc = allocation_service.create_allocation(admin, driver.id, {str(products["cola"].id): 1})
        allocation_service.close_allocation(admin, alloc.id)
        with pytest.raises(AllocationError):
            allocation_service.close_allocation(admin, alloc.id)

    def test_reconciled_allocation_cannot_be_edited(self, db_session, admin, driver, products):
        cola = products["cola"]
        alloc = allocation_service.create_allocation(admin, driver.id, {str(cola.id): 1})
        allocation_service.close_allocation(admin, alloc.id)
        with pytest.raises(AllocationError):
            allocation_service.update_allocation(admin, alloc.id, {str(cola.id): 2})


class TestListAllocations:
    def test_filters_by_driver_and_status(self, db_session, admin, driver, products):
        cola = products["cola"]
        first = allocation_service.create_allocation(admin, driver.id, {str(cola.id): 1}, "2026-10-01")
        second = allocation_service.create_allocation(admin, driver.id, {str(cola.id): 2}, "2026-10-02")
        allocation_service.close_allocation(admin, first.id)

        listed = allocation_service.list_allocations(driver_id=driver.id)
        assert [a.id for a in listed] == [second.id, first.id]
        open_only = allocation_service.list_allocations(driver_id=driver.id, status=ALLOCATION_ALLOCATED)
        assert [a.id for a in open_only] == [second.id]
        assert allocation_service.driver_stock(driver.id, cola.id) == {cola.id: 2}
