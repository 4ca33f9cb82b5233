# Overview: Stock availability for order lines (warehouse, driver allocations, pending reservations).

"""
Stock availability

An actor sells from one of two pools:
- Drivers sell from their own open allocations: per product, the sum of
  max(0, quantity - sold) across every allocation not yet Reconciled.
- Everyone else sells from the warehouse `Product.stock`.

Pending orders reserve the quantity on their fulfillable lines until they are
delivered, so net availability subtracts what other Pending orders already
hold. Backordered lines reserve nothing.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Product, Order, DriverAllocation, User
from ..models.orders import ORDER_PENDING
from ..models.allocations import ALLOCATION_RECONCILED
from .concurrency import lock_for_update


def open_allocations_for_driver(driver_id: int, *, lock: bool = False) -> list[DriverAllocation]:
    """A driver's open allocations, oldest first (date, then id)."""
    query = (
        db.session.query(DriverAllocation)
        .filter(
            DriverAllocation.driver_id == driver_id,
            DriverAllocation.status != ALLOCATION_RECONCILED,
        )
        .order_by(DriverAllocation.date.asc(), DriverAllocation.id.asc())
    )
    if lock:
        query = lock_for_update(query)
    return query.all()


def driver_stock_map(driver_id: int) -> dict[int, int]:
    """Remaining allocated quantity per product for a driver."""
    totals: dict[int, int] = {}
    for alloc in open_allocations_for_driver(driver_id):
        for item in alloc.allocated_items:
            remaining = max(0, item["quantity"] - item["sold"])
            totals[item["product_id"]] = totals.get(item["product_id"], 0) + remaining
    return totals


def driver_available_stock(driver_id: int, product_id: int) -> int:
    return driver_stock_map(driver_id).get(product_id, 0)


def effective_stock_map(actor: User | None, products: list[Product]) -> dict[int, int]:
    """Stock each product can be sold from for this actor."""
    if actor is not None and actor.is_driver:
        allocated = driver_stock_map(actor.id)
        return {p.id: allocated.get(p.id, 0) for p in products}
    return {p.id: (p.stock or 0) for p in products}


def pending_reserved_map(exclude_order_id: int | None = None) -> dict[int, int]:
    """
    Quantity per product held by fulfillable lines of Pending orders.

    exclude_order_id drops one order's own reservation (used when editing it).
    """
    query = db.session.query(Order).filter(Order.status == ORDER_PENDING)
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)

    reserved: dict[int, int] = {}
    for order in query.all():
        for item in order.order_items:
            reserved[item["product_id"]] = reserved.get(item["product_id"], 0) + item["quantity"]
    return reserved


def net_available_map(
    actor: User | None,
    products: list[Product],
    *,
    exclude_order_id: int | None = None,
) -> dict[int, int]:
    """Effective stock minus other Pending orders' reservations, per product."""
    effective = effective_stock_map(actor, products)
    reserved = pending_reserved_map(exclude_order_id)
    return {pid: qty - reserved.get(pid, 0) for pid, qty in effective.items()}
