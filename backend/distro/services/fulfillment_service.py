# Overview: Delivery finalization; stock re-check, allocation reconciliation and warehouse deduction.

"""
Delivery Finalization

WHY: Delivering an order is the single point where stock actually leaves:
warehouse stock is deducted and, for driver deliveries, the quantities are
attributed back to the driver's allocations, oldest first.

INVARIANTS:
- An order becomes Delivered at most once; finalizing a Delivered order is a
  successful no-op with no stock or allocation change.
- A shortfall found by the re-check aborts everything and leaves the order
  Pending.
- Allocation `sold` counters only grow and never pass the allocated quantity.
- Order, allocations and products are written in one transaction; rows carry
  version_id so a concurrent writer that read stale stock gets StaleDataError
  and the whole finalization is re-run against fresh rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Order, Product, User, DriverAllocation
from ..models.orders import ORDER_DELIVERED, ORDER_CANCELLED
from ..models.allocations import ALLOCATION_DELIVERED
from ..validation import NotFoundError
from distro.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_order_event
from .stock_service import effective_stock_map, open_allocations_for_driver


class FulfillmentError(Exception):
    """Raised when an order cannot be finalized."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass
class FinalizeResult:
    order: Order
    already_delivered: bool = False
    allocations: list[DriverAllocation] = field(default_factory=list)
    products: list[Product] = field(default_factory=list)
    skipped_stock: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "already_delivered": self.already_delivered,
            "allocations": [a.to_dict() for a in self.allocations],
            "products": [p.to_dict() for p in self.products],
            "skipped_stock": self.skipped_stock,
        }


def _quantities_by_product(lines: list[dict]) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in lines:
        totals[line["product_id"]] = totals.get(line["product_id"], 0) + line["quantity"]
    return totals


def consume_oldest_first(
    allocations: list[DriverAllocation],
    to_deduct: dict[int, int],
    prices: dict[int, int],
) -> tuple[list[DriverAllocation], dict[int, int]]:
    """
    Attribute delivered quantities to allocations in the order given.

    For each allocation item with outstanding need, take
    min(quantity - sold, need) by raising `sold`. Changed allocations get their
    sales total recomputed (sum of sold * product price) and are marked
    Delivered. Returns the changed allocations and whatever need is left.
    """
    remaining = {pid: qty for pid, qty in to_deduct.items() if qty > 0}
    changed: list[DriverAllocation] = []

    for alloc in allocations:
        items = alloc.allocated_items
        touched = False
        for item in items:
            need = remaining.get(item["product_id"], 0)
            if need <= 0:
                continue
            available = max(0, item["quantity"] - item["sold"])
            if available <= 0:
                continue
            use = min(available, need)
            item["sold"] += use
            remaining[item["product_id"]] = need - use
            touched = True

        if touched:
            alloc.allocated_items = items
            alloc.sales_total_cents = sum(it["sold"] * prices.get(it["product_id"], 0) for it in items)
            alloc.status = ALLOCATION_DELIVERED
            changed.append(alloc)

    return changed, {pid: qty for pid, qty in remaining.items() if qty > 0}


def _delivering_driver(actor: User, order: Order) -> User | None:
    """The actor when they are a driver, otherwise the assignee if a driver."""
    if actor.is_driver:
        return actor
    if order.assigned_user_id:
        assignee = db.session.get(User, order.assigned_user_id)
        if assignee is not None and assignee.is_driver:
            return assignee
    return None


def _reconcile_allocations(driver: User, lines: list[dict]) -> list[DriverAllocation]:
    allocations = open_allocations_for_driver(driver.id, lock=True)
    if not allocations:
        return []

    product_ids = {it["product_id"] for alloc in allocations for it in alloc.allocated_items}
    prices = {
        p.id: p.price_cents or 0
        for p in db.session.query(Product).filter(Product.id.in_(list(product_ids))).all()
    } if product_ids else {}

    changed, leftover = consume_oldest_first(allocations, _quantities_by_product(lines), prices)
    if leftover:
        current_app.logger.warning(
            "Driver %s allocations could not cover delivered quantities: %s", driver.id, leftover
        )
    return changed


def _deduct_warehouse_stock(lines: list[dict], products: dict[int, Product]) -> tuple[list[Product], list[dict]]:
    touched: dict[int, Product] = {}
    skipped: list[dict] = []
    for line in lines:
        product = products.get(line["product_id"])
        if product is not None and product.stock >= line["quantity"]:
            product.stock -= line["quantity"]
            touched[product.id] = product
        else:
            available = product.stock if product is not None else None
            current_app.logger.warning(
                "Insufficient warehouse stock for product %s: available %s, required %s",
                line["product_id"], available, line["quantity"],
            )
            skipped.append({
                "product_id": line["product_id"],
                "available": available,
                "required": line["quantity"],
            })
    return list(touched.values()), skipped


def finalize_order(order_id: int, actor: User) -> FinalizeResult:
    """
    Mark an order Delivered and move the stock.

    Steps: re-check effective stock, flip status, reconcile the delivering
    driver's allocations oldest first, deduct warehouse stock (skipping and
    logging lines the warehouse cannot cover).

    Raises:
        NotFoundError: unknown order
        FulfillmentError: cancelled order, no items, or insufficient stock
    """
    def _op() -> FinalizeResult:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")

        if order.status == ORDER_DELIVERED:
            return FinalizeResult(order=order, already_delivered=True)

        if order.status == ORDER_CANCELLED:
            raise FulfillmentError("Cannot finalize a cancelled order")

        lines = order.order_items
        if not lines:
            raise FulfillmentError("Cannot finalize an order with no items")

        needed = _quantities_by_product(lines)
        products = {
            p.id: p
            for p in lock_for_update(
                db.session.query(Product).filter(Product.id.in_(list(needed)))
            ).all()
        }
        effective = effective_stock_map(actor, list(products.values()))

        shortfall = []
        for product_id, quantity in needed.items():
            available = effective.get(product_id, 0)
            if available < quantity:
                product = products.get(product_id)
                shortfall.append({
                    "product_id": product_id,
                    "name": product.name if product else None,
                    "available": available,
                    "requested": quantity,
                })
        if shortfall:
            names = ", ".join(str(s["name"] or s["product_id"]) for s in shortfall)
            raise FulfillmentError(
                f"Insufficient stock for {names}. Cannot finalize order.",
                details={"items": shortfall},
            )

        order.status = ORDER_DELIVERED
        order.sold_quantity = sum(needed.values())
        order.delivered_at = utcnow()
        order.delivered_by_user_id = actor.id

        allocations: list[DriverAllocation] = []
        driver = _delivering_driver(actor, order)
        if driver is not None:
            allocations = _reconcile_allocations(driver, lines)

        touched, skipped = _deduct_warehouse_stock(lines, products)

        append_order_event(
            event_type="order.delivered",
            entity_type="order",
            entity_id=order.id,
            order_id=order.id,
            actor_user_id=actor.id,
            occurred_at=order.delivered_at,
            note=f"Order {order.order_number} delivered",
            payload={
                "sold_quantity": order.sold_quantity,
                "driver_id": driver.id if driver else None,
                "allocation_ids": [a.id for a in allocations],
                "skipped_stock": skipped,
            },
        )

        return FinalizeResult(order=order, allocations=allocations, products=touched, skipped_stock=skipped)

    return run_in_transaction(_op)
