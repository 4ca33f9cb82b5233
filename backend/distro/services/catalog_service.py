# Overview: Products and customers; master data writes, stock adjustments, outstanding balances.

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, Customer, Order, User
from ..models.orders import ORDER_CANCELLED
from ..validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    coerce_int,
    coerce_cents,
    coerce_percent,
    coerce_id_map,
)
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_order_event


class CatalogError(Exception):
    """Raised for catalog operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


PRODUCT_FIELDS = {"sku", "name", "category", "supplier", "stock", "price_cents", "cost_price_cents", "is_active"}
CUSTOMER_FIELDS = {"name", "email", "phone", "location", "route", "discounts"}


def _clean_str(value, field: str, *, required: bool = False) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if required and not value:
        raise ValidationError(f"{field} is required")
    return value or None


def _product_patch(data: dict, *, partial: bool) -> dict:
    unknown = set(data) - PRODUCT_FIELDS
    if unknown:
        raise ValidationError(f"Unknown product fields: {sorted(unknown)}")

    patch: dict = {}
    if "sku" in data or not partial:
        patch["sku"] = _clean_str(data.get("sku"), "sku", required=True)
    if "name" in data or not partial:
        patch["name"] = _clean_str(data.get("name"), "name", required=True)
    for key in ("category", "supplier"):
        if key in data:
            patch[key] = _clean_str(data[key], key)
    if "stock" in data:
        patch["stock"] = coerce_int(data["stock"], "stock", minimum=0)
    for key in ("price_cents", "cost_price_cents"):
        if key in data:
            patch[key] = coerce_cents(data[key], key)
    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("is_active must be a boolean")
        patch["is_active"] = data["is_active"]
    return patch


# =============================================================================
# PRODUCTS
# =============================================================================

def list_products(*, include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def create_product(data: dict) -> Product:
    patch = _product_patch(data, partial=False)
    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"SKU {patch['sku']} already exists")
    return product


def update_product(product_id: int, data: dict) -> Product:
    product = get_product(product_id)
    patch = _product_patch(data, partial=True)
    for key, value in patch.items():
        setattr(product, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"SKU {patch.get('sku')} already exists")
    return product


def adjust_stock(actor: User, product_id: int, delta: int, reason: str | None = None) -> Product:
    """
    Add (positive delta) or remove (negative delta) warehouse stock.

    Stock never goes below zero; a removal larger than what is on hand is
    rejected, not clamped.
    """
    if delta == 0:
        raise ValidationError("delta must be non-zero")

    def _op() -> Product:
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
        if product.stock + delta < 0:
            raise CatalogError(
                "Stock cannot go below zero",
                details={"product_id": product.id, "stock": product.stock, "delta": delta},
            )
        before = product.stock
        product.stock = before + delta

        append_order_event(
            event_type="product.stock_adjusted",
            entity_type="product",
            entity_id=product.id,
            actor_user_id=actor.id,
            note=reason,
            payload={"before": before, "after": product.stock, "delta": delta},
        )
        return product

    return run_in_transaction(_op)


# =============================================================================
# CUSTOMERS
# =============================================================================

def _customer_patch(data: dict, *, partial: bool) -> dict:
    unknown = set(data) - CUSTOMER_FIELDS
    if unknown:
        raise ValidationError(f"Unknown customer fields: {sorted(unknown)}")

    patch: dict = {}
    if "name" in data or not partial:
        patch["name"] = _clean_str(data.get("name"), "name", required=True)
    for key in ("email", "phone", "location", "route"):
        if key in data:
            patch[key] = _clean_str(data[key], key)
    if "discounts" in data:
        patch["discounts"] = coerce_id_map(data["discounts"], "discounts", coerce_percent)
    return patch


def list_customers(*, route: str | None = None) -> list[Customer]:
    query = db.session.query(Customer)
    if route:
        query = query.filter(Customer.route == route)
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def create_customer(actor: User | None, data: dict) -> Customer:
    patch = _customer_patch(data, partial=False)
    discounts = patch.pop("discounts", {})
    customer = Customer(created_by_user_id=actor.id if actor else None, **patch)
    customer.discounts = discounts
    db.session.add(customer)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"A customer with phone {patch.get('phone')} already exists")
    return customer


def update_customer(customer_id: int, data: dict) -> Customer:
    customer = get_customer(customer_id)
    patch = _customer_patch(data, partial=True)
    for key, value in patch.items():
        setattr(customer, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"A customer with phone {patch.get('phone')} already exists")
    return customer


def set_customer_discounts(customer_id: int, discounts) -> Customer:
    """Replace the customer's default per-product discount percentages."""
    return update_customer(customer_id, {"discounts": discounts or {}})


def customer_outstanding(customer_id: int) -> dict:
    """Cheque and credit still owed across the customer's non-cancelled orders."""
    customer = get_customer(customer_id)
    cheque, credit, count = (
        db.session.query(
            func.coalesce(func.sum(Order.cheque_balance_cents), 0),
            func.coalesce(func.sum(Order.credit_balance_cents), 0),
            func.count(Order.id),
        )
        .filter(Order.customer_id == customer.id, Order.status != ORDER_CANCELLED)
        .one()
    )
    return {
        "customer_id": customer.id,
        "customer_name": customer.name,
        "order_count": int(count),
        "cheque_balance_cents": int(cheque),
        "credit_balance_cents": int(credit),
        "outstanding_cents": int(cheque) + int(credit),
    }
