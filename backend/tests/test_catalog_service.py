import pytest

from distro.models import OrderEvent
from distro.models.orders import ORDER_CANCELLED
from distro.services import catalog_service, order_service
from distro.services.order_service import OrderRequest
from distro.services.balance_service import BalanceInput, save_balances
from distro.services.catalog_service import CatalogError
from distro.validation import ValidationError, ConflictError


class TestProducts:
    def test_create_and_duplicate_sku(self, db_session):
        product = catalog_service.create_product({"sku": "TEA-1", "name": "Tea", "price_cents": 250, "stock": 12})
        assert product.stock == 12
        assert product.is_active is True

        with pytest.raises(ConflictError):
            catalog_service.create_product({"sku": "TEA-1", "name": "Other tea"})

    def test_rejects_unknown_fields(self, db_session):
        with pytest.raises(ValidationError):
            catalog_service.create_product({"sku": "X", "name": "X", "colour": "red"})

    def test_inactive_products_are_hidden(self, db_session, products):
        catalog_service.update_product(products["juice"].id, {"is_active": False})
        names = [p.name for p in catalog_service.list_products()]
        assert names == ["Cola", "Water"]
        assert len(catalog_service.list_products(include_inactive=True)) == 3


class TestAdjustStock:
    def test_adjust_up_and_down(self, db_session, admin, products):
        water = products["water"]
        assert catalog_service.adjust_stock(admin, water.id, 5, "delivery from supplier").stock == 25
        assert catalog_service.adjust_stock(admin, water.id, -25).stock == 0

    def test_never_below_zero(self, db_session, admin, products):
        water = products["water"]
        with pytest.raises(CatalogError) as exc:
            catalog_service.adjust_stock(admin, water.id, -21)
        assert exc.value.details["stock"] == 20
        assert catalog_service.get_product(water.id).stock == 20

    def test_zero_delta_rejected(self, db_session, admin, products):
        with pytest.raises(ValidationError):
            catalog_service.adjust_stock(admin, products["water"].id, 0)


class TestCustomers:
    def test_discounts_are_normalized(self, db_session, admin, products):
        cola = products["cola"]
        customer = catalog_service.create_customer(admin, {"name": "Kiosk", "discounts": {str(cola.id): 120}})
        assert customer.discounts == {cola.id: 100.0}

        updated = catalog_service.set_customer_discounts(customer.id, {str(cola.id): 5})
        assert updated.discounts == {cola.id: 5.0}

    def test_duplicate_phone(self, db_session, admin, customer):
        with pytest.raises(ConflictError):
            catalog_service.create_customer(admin, {"name": "Copy", "phone": "555-0100"})

    def test_outstanding_sums_open_balances(self, db_session, admin, customer, products):
        water = products["water"]
        first = order_service.create_order(admin, OrderRequest(customer_id=customer.id, quantities={water.id: 10}))
        second = order_service.create_order(admin, OrderRequest(customer_id=customer.id, quantities={water.id: 5}))
        save_balances(first.id, admin, BalanceInput(amount_paid_cents=400, cheque_balance_cents=300))
        save_balances(second.id, admin, BalanceInput(amount_paid_cents=100))
        third = order_service.create_order(admin, OrderRequest(customer_id=customer.id, quantities={water.id: 1}))
        save_balances(third.id, admin, BalanceInput())
        order_service.set_status(admin, third.id, ORDER_CANCELLED)

        outstanding = catalog_service.customer_outstanding(customer.id)

        assert outstanding["order_count"] == 2
        assert outstanding["cheque_balance_cents"] == 300
        assert outstanding["credit_balance_cents"] == 300 + 400
        assert outstanding["outstanding_cents"] == 1000


def test_stock_adjustment_is_audited(db_session, admin, products):
    water = products["water"]
    catalog_service.adjust_stock(admin, water.id, 3, "found in back room")
    event = db_session.query(OrderEvent).filter_by(event_type="product.stock_adjusted").one()
    assert event.entity_id == water.id
    assert event.note == "found in back room"
