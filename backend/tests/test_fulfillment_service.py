"""
Delivery finalization tests.

Verifies:
- Finalizing deducts warehouse stock once; a second finalize is a no-op
- Stock shortfalls abort with itemized details and leave the order Pending
- Driver deliveries consume allocations oldest first
- Warehouse lines that cannot be covered are skipped, not failed
"""

from datetime import date

import pytest

from distro.extensions import db
from distro.models import Product, DriverAllocation
from distro.models.orders import ORDER_PENDING, ORDER_DELIVERED, ORDER_CANCELLED
from distro.models.allocations import ALLOCATION_ALLOCATED, ALLOCATION_DELIVERED
from distro.services import order_service
from distro.services.order_service import OrderRequest
from distro.services.fulfillment_service import finalize_order, consume_oldest_first, FulfillmentError
from distro.services.ledger_service import list_order_events


def _order(actor, customer, quantities):
    return order_service.create_order(actor, OrderRequest(customer_id=customer.id, quantities=quantities))


def _allocate(session, driver, items, day):
    alloc = DriverAllocation(driver_id=driver.id, driver_name=driver.name, date=day)
    alloc.allocated_items = items
    session.add(alloc)
    session.commit()
    return alloc


def _stock(product):
    return db.session.get(Product, product.id).stock


# =============================================================================
# OLDEST-FIRST CONSUMPTION
# =============================================================================


class TestConsumeOldestFirst:
    def _alloc(self, items):
        alloc = DriverAllocation(driver_id=1, driver_name="d", date=date(2026, 10, 1))
        alloc.allocated_items = items
        return alloc

    def test_first_allocation_is_used_up_before_the_next(self):
        older = self._alloc([{"product_id": 1, "quantity": 5, "sold": 0}])
        newer = self._alloc([{"product_id": 1, "quantity": 10, "sold": 0}])

        changed, leftover = consume_oldest_first([older, newer], {1: 8}, {1: 150})

        assert changed == [older, newer]
        assert older.allocated_items[0]["sold"] == 5
        assert newer.allocated_items[0]["sold"] == 3
        assert older.sales_total_cents == 750
        assert newer.sales_total_cents == 450
        assert older.status == ALLOCATION_DELIVERED
        assert leftover == {}

    def test_untouched_allocations_are_not_reported(self):
        older = self._alloc([{"product_id": 1, "quantity": 5, "sold": 0}])
        newer = self._alloc([{"product_id": 2, "quantity": 5, "sold": 0}])

        changed, _ = consume_oldest_first([older, newer], {1: 2}, {1: 100, 2: 100})

        assert changed == [older]
        assert newer.allocated_items[0]["sold"] == 0

    def test_sold_never_exceeds_quantity(self):
        alloc = self._alloc([{"product_id": 1, "quantity": 4, "sold": 3}])

        changed, leftover = consume_oldest_first([alloc], {1: 6}, {1: 100})

        assert alloc.allocated_items[0]["sold"] == 4
        assert leftover == {1: 5}

    def test_sales_total_counts_every_sold_item(self):
        alloc = self._alloc([
            {"product_id": 1, "quantity": 4, "sold": 2},
            {"product_id": 2, "quantity": 4, "sold": 1},
        ])

        consume_oldest_first([alloc], {1: 1}, {1: 100, 2: 250})

        assert alloc.sales_total_cents == 3 * 100 + 1 * 250


# =============================================================================
# WAREHOUSE DELIVERIES
# =============================================================================


class TestFinalizeWarehouse:
    def test_marks_delivered_and_deducts_stock(self, db_session, admin, customer, products):
        cola, water = products["cola"], products["water"]
        order = _order(admin, customer, {cola.id: 10, water.id: 5})

        result = finalize_order(order.id, admin)

        assert result.already_delivered is False
        assert result.order.status == ORDER_DELIVERED
        assert result.order.sold_quantity == 15
        assert result.order.delivered_at is not None
        assert result.allocations == []
        assert _stock(cola) == 90
        assert _stock(water) == 15
        assert list_order_events(order.id)[-1].event_type == "order.delivered"

    def test_second_finalize_is_a_noop(self, db_session, admin, customer, products):
        cola = products["cola"]
        order = _order(admin, customer, {cola.id: 10})
        finalize_order(order.id, admin)

        result = finalize_order(order.id, admin)

        assert result.already_delivered is True
        assert result.products == []
        assert _stock(cola) == 90

    def test_backordered_lines_are_not_delivered(self, db_session, admin, customer, products):
        cola, juice = products["cola"], products["juice"]
        order = _order(admin, customer, {cola.id: 2, juice.id: 3})

        result = finalize_order(order.id, admin)

        assert result.order.sold_quantity == 2
        assert _stock(juice) == 0

    def test_cancelled_order_is_rejected(self, db_session, admin, customer, products):
        order = _order(admin, customer, {products["cola"].id: 1})
        order_service.set_status(admin, order.id, ORDER_CANCELLED)

        with pytest.raises(FulfillmentError, match="cancelled"):
            finalize_order(order.id, admin)

    def test_order_without_fulfillable_items_is_rejected(self, db_session, admin, customer, products):
        order = _order(admin, customer, {products["juice"].id: 1})
        with pytest.raises(FulfillmentError, match="no items"):
            finalize_order(order.id, admin)

    def test_shortfall_aborts_and_keeps_order_pending(self, db_session, admin, customer, products):
        cola = products["cola"]
        order = _order(admin, customer, {cola.id: 10})
        cola.stock = 5
        db_session.commit()

        with pytest.raises(FulfillmentError) as exc:
            finalize_order(order.id, admin)

        assert exc.value.details["items"] == [
            {"product_id": cola.id, "name": "Cola", "available": 5, "requested": 10}
        ]
        assert order_service.get_order(order.id).status == ORDER_PENDING
        assert _stock(cola) == 5


# =============================================================================
# DRIVER DELIVERIES
# =============================================================================


class TestFinalizeDriver:
    def test_driver_delivery_reconciles_oldest_allocation_first(self, db_session, driver, customer, products):
        cola = products["cola"]
        newer = _allocate(db_session, driver, [{"product_id": cola.id, "quantity": 10, "sold": 0}], date(2026, 10, 2))
        older = _allocate(db_session, driver, [{"product_id": cola.id, "quantity": 5, "sold": 0}], date(2026, 10, 1))
        order = _order(driver, customer, {cola.id: 8})

        result = finalize_order(order.id, driver)

        assert [a.id for a in result.allocations] == [older.id, newer.id]
        older_row = db.session.get(DriverAllocation, older.id)
        newer_row = db.session.get(DriverAllocation, newer.id)
        assert older_row.allocated_items[0]["sold"] == 5
        assert newer_row.allocated_items[0]["sold"] == 3
        assert older_row.status == ALLOCATION_DELIVERED
        assert older_row.sales_total_cents == 750
        assert newer_row.sales_total_cents == 450
        assert _stock(cola) == 92

    def test_total_sold_increase_matches_delivered_quantity(self, db_session, driver, customer, products):
        cola, water = products["cola"], products["water"]
        _allocate(db_session, driver, [
            {"product_id": cola.id, "quantity": 6, "sold": 1},
            {"product_id": water.id, "quantity": 4, "sold": 0},
        ], date(2026, 10, 1))
        _allocate(db_session, driver, [{"product_id": cola.id, "quantity": 6, "sold": 0}], date(2026, 10, 2))
        order = _order(driver, customer, {cola.id: 7, water.id: 2})

        finalize_order(order.id, driver)

        sold = {cola.id: 0, water.id: 0}
        for alloc in db_session.query(DriverAllocation).all():
            for item in alloc.allocated_items:
                sold[item["product_id"]] += item["sold"]
        assert sold == {cola.id: 1 + 7, water.id: 2}

    def test_assignee_driver_is_reconciled_when_office_finalizes(self, db_session, admin, driver, customer, products):
        cola = products["cola"]
        alloc = _allocate(db_session, driver, [{"product_id": cola.id, "quantity": 10, "sold": 0}], date(2026, 10, 1))
        order = _order(driver, customer, {cola.id: 4})

        result = finalize_order(order.id, admin)

        assert [a.id for a in result.allocations] == [alloc.id]
        assert db.session.get(DriverAllocation, alloc.id).allocated_items[0]["sold"] == 4
        assert _stock(cola) == 96

    def test_driver_shortfall_uses_allocated_stock(self, db_session, driver, customer, products):
        cola = products["cola"]
        alloc = _allocate(db_session, driver, [{"product_id": cola.id, "quantity": 10, "sold": 0}], date(2026, 10, 1))
        order = _order(driver, customer, {cola.id: 6})

        alloc.allocated_items = [{"product_id": cola.id, "quantity": 10, "sold": 7}]
        db_session.commit()

        with pytest.raises(FulfillmentError) as exc:
            finalize_order(order.id, driver)

        assert exc.value.details["items"][0]["available"] == 3
        row = db.session.get(DriverAllocation, alloc.id)
        assert row.allocated_items[0]["sold"] == 7
        assert row.status == ALLOCATION_ALLOCATED

    def test_short_warehouse_line_is_skipped(self, db_session, driver, customer, products):
        water = products["water"]
        _allocate(db_session, driver, [{"product_id": water.id, "quantity": 10, "sold": 0}], date(2026, 10, 1))
        order = _order(driver, customer, {water.id: 5})
        water.stock = 2
        db_session.commit()

        result = finalize_order(order.id, driver)

        assert result.order.status == ORDER_DELIVERED
        assert result.skipped_stock == [{"product_id": water.id, "available": 2, "required": 5}]
        assert _stock(water) == 2
