# Overview: Service-layer operations for orders; creation, stock splitting, edits, status and deletion.

"""
Order Service - stock-aware order writes

WHY: An order may only promise stock that is not already promised. Every
create/edit recomputes, per product, the actor's effective stock minus what
other Pending orders reserve, routes each line to the fulfillable or the
backordered list, and rejects the whole write when a fulfillable line asks for
more than is left.

DESIGN PRINCIPLES:
- All-or-nothing: validation runs before any row is written
- Line prices are snapshotted at write time
- Order numbers come from the server-side document sequence
- Notifications run after commit and can never fail the write
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import Order, Product, Customer, User
from ..models.orders import (
    ORDER_PENDING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    VALID_ORDER_STATUSES,
)
from ..validation import (
    ValidationError,
    NotFoundError,
    coerce_int,
    coerce_cents,
    coerce_percent,
    coerce_id_map,
)
from distro.time_utils import today, parse_iso_date
from .concurrency import lock_for_update, run_in_transaction
from .document_service import next_order_number
from .ledger_service import append_order_event
from .stock_service import net_available_map
from .auth_service import confirm_user_password
from .notification_service import notify_new_order


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(OrderError):
    """A fulfillable line asks for more than the net available stock."""


class PasswordConfirmationError(OrderError):
    """The acting user's password re-entry did not match."""


class SubmissionInProgressError(OrderError):
    """Another order save from the same actor has not finished."""


EDITABLE_STATUSES = {ORDER_PENDING, ORDER_SHIPPED}
MANUAL_STATUSES = {ORDER_PENDING, ORDER_SHIPPED, ORDER_CANCELLED}


# =============================================================================
# REQUEST PARSING
# =============================================================================

@dataclass
class OrderRequest:
    """What the editor submitted: quantities and overrides keyed by product id."""
    customer_id: int | None
    quantities: dict[int, int]
    prices: dict[int, int] = field(default_factory=dict)
    discounts: dict[int, float] = field(default_factory=dict)
    free: dict[int, int] = field(default_factory=dict)
    held: set[int] = field(default_factory=set)
    returns: set[int] = field(default_factory=set)
    expected_delivery_date: date | None = None
    delivery_address: str | None = None
    notes: str | None = None

    @property
    def requested_quantity(self) -> int:
        return sum(q for q in self.quantities.values() if q > 0)


def _quantity(value, field_name: str) -> int:
    return coerce_int(value, field_name, minimum=0)


def order_request_from_payload(data: dict) -> OrderRequest:
    """
    Build an OrderRequest from JSON.

    Expected keys: customer_id, items ({product_id: quantity}), prices,
    discounts, free, held (list of product ids), returns (list of product
    ids), expected_delivery_date, delivery_address, notes.
    """
    customer_id = data.get("customer_id")
    if customer_id not in (None, ""):
        customer_id = coerce_int(customer_id, "customer_id", minimum=1)
    else:
        customer_id = None

    held = data.get("held") or []
    returns = data.get("returns") or []
    if not isinstance(held, list) or not isinstance(returns, list):
        raise ValidationError("held and returns must be lists of product ids")

    try:
        expected = parse_iso_date(data.get("expected_delivery_date"))
    except ValueError:
        raise ValidationError("expected_delivery_date must be an ISO-8601 date")

    return OrderRequest(
        customer_id=customer_id,
        quantities=coerce_id_map(data.get("items"), "items", _quantity),
        prices=coerce_id_map(data.get("prices"), "prices", coerce_cents),
        discounts=coerce_id_map(data.get("discounts"), "discounts", coerce_percent),
        free=coerce_id_map(data.get("free"), "free", _quantity),
        held={coerce_int(pid, "held", minimum=1) for pid in held},
        returns={coerce_int(pid, "returns", minimum=1) for pid in returns},
        expected_delivery_date=expected,
        delivery_address=(data.get("delivery_address") or "").strip() or None,
        notes=(data.get("notes") or "").strip() or None,
    )


# =============================================================================
# STOCK SPLITTING
# =============================================================================

@dataclass
class SplitResult:
    order_items: list[dict]
    backordered_items: list[dict]
    insufficient: list[dict]

    @property
    def total_cents(self) -> int:
        return sum(line_total_cents(it) for it in self.order_items)


def line_total_cents(item: dict) -> int:
    """price * quantity * (1 - discount/100), rounded half-up to the cent."""
    discount = Decimal(str(item.get("discount") or 0))
    amount = Decimal(item["price_cents"]) * item["quantity"] * (Decimal(100) - discount) / Decimal(100)
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def cost_total_cents(items: list[dict], products: dict[int, Product]) -> int:
    return sum(
        (products[it["product_id"]].cost_price_cents or 0) * it["quantity"]
        for it in items
        if it["product_id"] in products
    )


def split_lines(
    request: OrderRequest,
    products: dict[int, Product],
    net_available: dict[int, int],
    customer_discounts: dict[int, float] | None = None,
) -> SplitResult:
    """
    Route each requested line to order_items or backordered_items.

    - held, or no net stock left (<= 0): backordered
    - otherwise fulfillable; quantities above the net stock are reported in
      `insufficient` (the caller rejects the write)
    """
    customer_discounts = customer_discounts or {}
    order_items: list[dict] = []
    backordered: list[dict] = []
    insufficient: list[dict] = []

    for product_id in sorted(request.quantities):
        quantity = request.quantities[product_id]
        if quantity <= 0:
            continue

        product = products.get(product_id)
        if product is None:
            raise OrderError("Product not found", details={"product_id": product_id})

        line = {
            "product_id": product_id,
            "quantity": quantity,
            "price_cents": request.prices.get(product_id, product.price_cents or 0),
        }
        discount = request.discounts.get(product_id, customer_discounts.get(product_id, 0))
        if discount:
            line["discount"] = discount
        if request.free.get(product_id):
            line["free"] = request.free[product_id]
        if product_id in request.returns:
            line["is_return"] = True

        available = net_available.get(product_id, 0)
        if product_id in request.held or available <= 0:
            backordered.append(line)
            continue

        if quantity > available:
            insufficient.append({
                "product_id": product_id,
                "name": product.name,
                "available": available,
                "requested": quantity,
            })
        order_items.append(line)

    return SplitResult(order_items=order_items, backordered_items=backordered, insufficient=insufficient)


def _raise_insufficient(insufficient: list[dict], action: str) -> None:
    summary = "; ".join(
        f"{i['name']}: available {i['available']}, requested {i['requested']}" for i in insufficient
    )
    raise InsufficientStockError(
        f"Cannot {action} order because some products would exceed available stock "
        f"considering pending orders: {summary}",
        details={"items": insufficient},
    )


def _load_products(product_ids) -> dict[int, Product]:
    if not product_ids:
        return {}
    rows = db.session.query(Product).filter(Product.id.in_(list(product_ids))).all()
    return {p.id: p for p in rows}


def _split_for(actor: User, request: OrderRequest, customer: Customer, *, exclude_order_id: int | None) -> tuple[SplitResult, dict[int, Product]]:
    wanted = [pid for pid, qty in request.quantities.items() if qty > 0]
    products = _load_products(wanted)
    net = net_available_map(actor, list(products.values()), exclude_order_id=exclude_order_id)
    return split_lines(request, products, net, customer.discounts), products


def _validate_request(request: OrderRequest) -> None:
    if request.customer_id is None:
        raise OrderError("Select a customer")
    if request.requested_quantity == 0:
        raise OrderError("Add at least one item to the order")


# =============================================================================
# DUPLICATE SUBMISSION GUARD
# =============================================================================

_in_flight: set[int] = set()
_in_flight_lock = threading.Lock()


@contextmanager
def submission_guard(actor_id: int):
    """Reject a second order save from the same actor while one is running."""
    with _in_flight_lock:
        if actor_id in _in_flight:
            raise SubmissionInProgressError("Order save already in progress", details={"actor_user_id": actor_id})
        _in_flight.add(actor_id)
    try:
        yield
    finally:
        with _in_flight_lock:
            _in_flight.discard(actor_id)


# =============================================================================
# CREATE / EDIT
# =============================================================================

def create_order(actor: User, request: OrderRequest) -> Order:
    """
    Create a Pending order assigned to the acting user.

    Raises:
        OrderError: no customer, empty order, unknown product
        InsufficientStockError: a fulfillable line exceeds net stock
        NotFoundError: unknown customer
    """
    _validate_request(request)

    with submission_guard(actor.id):
        def _op() -> Order:
            customer = db.session.get(Customer, request.customer_id)
            if not customer:
                raise NotFoundError(f"Customer {request.customer_id} not found")

            split, products = _split_for(actor, request, customer, exclude_order_id=None)
            if split.insufficient:
                _raise_insufficient(split.insufficient, "create")

            order = Order(
                order_number=next_order_number(),
                customer_id=customer.id,
                customer_name=customer.name,
                assigned_user_id=actor.id,
                status=ORDER_PENDING,
                order_date=request.expected_delivery_date or today(),
                expected_delivery_date=request.expected_delivery_date,
                delivery_address=request.delivery_address,
                notes=request.notes or "",
                total_cents=split.total_cents,
                cost_cents=cost_total_cents(split.order_items, products),
                cheque_balance_cents=0,
                credit_balance_cents=0,
                return_amount_cents=0,
                amount_paid_cents=0,
            )
            order.order_items = split.order_items
            order.backordered_items = split.backordered_items
            db.session.add(order)
            db.session.flush()

            append_order_event(
                event_type="order.created",
                entity_type="order",
                entity_id=order.id,
                order_id=order.id,
                actor_user_id=actor.id,
                note=f"Order {order.order_number} created",
                payload={
                    "total_cents": order.total_cents,
                    "fulfillable": len(split.order_items),
                    "backordered": len(split.backordered_items),
                },
            )
            return order

        order = run_in_transaction(_op)

    notify_new_order(order, actor)
    return order


def update_order(actor: User, order_id: int, request: OrderRequest) -> Order:
    """
    Re-split and rewrite an existing order's lines.

    The order's own reservation is excluded from the pending totals. The order
    number and the balance fields are kept; the editor becomes the assignee.
    """
    _validate_request(request)

    with submission_guard(actor.id):
        def _op() -> Order:
            order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
            if not order:
                raise NotFoundError(f"Order {order_id} not found")
            if order.status not in EDITABLE_STATUSES:
                raise OrderError(f"Cannot edit an order with status {order.status}")

            customer = db.session.get(Customer, request.customer_id)
            if not customer:
                raise NotFoundError(f"Customer {request.customer_id} not found")

            split, products = _split_for(actor, request, customer, exclude_order_id=order.id)
            if split.insufficient:
                _raise_insufficient(split.insufficient, "update")

            order.customer_id = customer.id
            order.customer_name = customer.name
            order.assigned_user_id = actor.id
            order.order_items = split.order_items
            order.backordered_items = split.backordered_items
            order.expected_delivery_date = request.expected_delivery_date
            if request.expected_delivery_date:
                order.order_date = request.expected_delivery_date
            order.delivery_address = request.delivery_address
            order.notes = request.notes or ""
            order.total_cents = split.total_cents
            order.cost_cents = cost_total_cents(split.order_items, products)

            append_order_event(
                event_type="order.updated",
                entity_type="order",
                entity_id=order.id,
                order_id=order.id,
                actor_user_id=actor.id,
                note=f"Order {order.order_number} updated",
                payload={"total_cents": order.total_cents},
            )
            return order

        return run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    assigned_user_id: int | None = None,
) -> list[Order]:
    query = db.session.query(Order)
    if status:
        if status not in VALID_ORDER_STATUSES:
            raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_ORDER_STATUSES}")
        query = query.filter(Order.status == status)
    if customer_id:
        query = query.filter(Order.customer_id == customer_id)
    if assigned_user_id:
        query = query.filter(Order.assigned_user_id == assigned_user_id)
    return query.order_by(Order.order_date.desc(), Order.id.desc()).all()


# =============================================================================
# STATUS / DELETE
# =============================================================================

def set_status(actor: User, order_id: int, new_status: str) -> Order:
    """
    Manual status change (Pending, Shipped, Cancelled).

    Delivered is reached only through finalization, and Delivered or
    Cancelled orders do not move again.
    """
    if new_status == ORDER_DELIVERED:
        raise OrderError("Use finalize to mark an order Delivered")
    if new_status not in MANUAL_STATUSES:
        raise ValidationError(f"Invalid status: {new_status}. Must be one of {sorted(MANUAL_STATUSES)}")

    def _op() -> Order:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status == new_status:
            return order
        if order.status in (ORDER_DELIVERED, ORDER_CANCELLED):
            raise OrderError(f"Cannot change status of a {order.status} order")

        previous = order.status
        order.status = new_status
        append_order_event(
            event_type="order.status_changed",
            entity_type="order",
            entity_id=order.id,
            order_id=order.id,
            actor_user_id=actor.id,
            note=f"{previous} -> {new_status}",
        )
        return order

    return run_in_transaction(_op)


def delete_order(actor: User, order_id: int, password: str | None) -> None:
    """
    Hard-delete an order after the actor re-enters their password.

    The order's collection records go with it; the audit trail keeps a
    deletion event.
    """
    if not confirm_user_password(actor, password):
        raise PasswordConfirmationError("Password confirmation failed")

    def _op() -> None:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")

        append_order_event(
            event_type="order.deleted",
            entity_type="order",
            entity_id=order.id,
            order_id=order.id,
            actor_user_id=actor.id,
            note=f"Order {order.order_number} deleted",
            payload={"status": order.status, "total_cents": order.total_cents},
        )
        db.session.delete(order)

    run_in_transaction(_op)
