# Overview: Driver stock allocations; create, adjust, close (reconcile) and list.

"""
Driver allocations

A driver is handed stock for a selling period. The allocation records what was
handed out; warehouse stock is only deducted when an order is delivered, so
allocating does not move Product.stock.

Each item's `sold` counter is raised by delivery finalization only. Editing an
allocation can change quantities but never below what has already been sold.
Closing an allocation records the unsold remainder as returned and takes the
allocation out of the driver's available stock.
"""

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import DriverAllocation, Product, User
from ..models.allocations import ALLOCATION_ALLOCATED, ALLOCATION_RECONCILED
from ..validation import NotFoundError, ValidationError, coerce_int
from distro.time_utils import today, parse_iso_date
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_order_event
from .stock_service import driver_available_stock, driver_stock_map


class AllocationError(Exception):
    """Raised for allocation operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def parse_allocation_items(raw) -> dict[int, int]:
    """
    Accept either {"<product_id>": quantity} or [{"product_id", "quantity"}].

    Quantities of the same product are summed; zero quantities are dropped.
    """
    pairs: list[tuple] = []
    if isinstance(raw, dict):
        pairs = list(raw.items())
    elif isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, dict):
                raise ValidationError("items entries must be objects")
            pairs.append((entry.get("product_id"), entry.get("quantity")))
    elif raw is not None:
        raise ValidationError("items must be an object or a list")

    quantities: dict[int, int] = {}
    for product_id, quantity in pairs:
        pid = coerce_int(product_id, "product_id", minimum=1)
        qty = coerce_int(quantity, f"items[{pid}].quantity", minimum=0)
        if qty:
            quantities[pid] = quantities.get(pid, 0) + qty
    return quantities


def _check_warehouse(quantities: dict[int, int]) -> dict[int, Product]:
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(list(quantities))).all()
    }
    missing = sorted(set(quantities) - set(products))
    if missing:
        raise AllocationError("Unknown product", details={"product_ids": missing})

    over = [
        {
            "product_id": pid,
            "name": products[pid].name,
            "available": products[pid].stock,
            "requested": qty,
        }
        for pid, qty in quantities.items()
        if qty > products[pid].stock
    ]
    if over:
        raise AllocationError("Allocated quantity exceeds warehouse stock", details={"items": over})
    return products


def _sales_total_cents(items: list[dict]) -> int:
    ids = [it["product_id"] for it in items]
    prices = {
        p.id: p.price_cents or 0
        for p in db.session.query(Product).filter(Product.id.in_(ids)).all()
    } if ids else {}
    return sum(it["sold"] * prices.get(it["product_id"], 0) for it in items)


def create_allocation(actor: User, driver_id: int, items, allocation_date: date | str | None = None) -> DriverAllocation:
    """
    Hand stock to a driver.

    Raises:
        NotFoundError: unknown driver
        AllocationError: user is not a driver, no items, unknown product,
            or a quantity above warehouse stock
    """
    quantities = parse_allocation_items(items)
    if not quantities:
        raise AllocationError("Add at least one item to the allocation")
    try:
        day = parse_iso_date(allocation_date) or today()
    except ValueError:
        raise ValidationError("date must be an ISO-8601 date")

    def _op() -> DriverAllocation:
        driver = db.session.get(User, driver_id)
        if not driver:
            raise NotFoundError(f"User {driver_id} not found")
        if not driver.is_driver:
            raise AllocationError(f"User {driver_id} is not a driver")

        _check_warehouse(quantities)

        alloc = DriverAllocation(
            driver_id=driver.id,
            driver_name=driver.name,
            date=day,
            status=ALLOCATION_ALLOCATED,
            sales_total_cents=0,
        )
        alloc.allocated_items = [
            {"product_id": pid, "quantity": qty, "sold": 0}
            for pid, qty in sorted(quantities.items())
        ]
        db.session.add(alloc)
        db.session.flush()

        append_order_event(
            event_type="allocation.created",
            entity_type="allocation",
            entity_id=alloc.id,
            actor_user_id=actor.id,
            note=f"Stock allocated to {driver.name}",
            payload={"items": alloc.allocated_items},
        )
        return alloc

    return run_in_transaction(_op)


def update_allocation(actor: User, allocation_id: int, items) -> DriverAllocation:
    """
    Replace the allocated quantities of an open allocation.

    Products already sold from must stay on the allocation with a quantity of
    at least their sold count.
    """
    quantities = parse_allocation_items(items)
    if not quantities:
        raise AllocationError("Add at least one item to the allocation")

    def _op() -> DriverAllocation:
        alloc = lock_for_update(db.session.query(DriverAllocation).filter_by(id=allocation_id)).first()
        if not alloc:
            raise NotFoundError(f"Allocation {allocation_id} not found")
        if alloc.status == ALLOCATION_RECONCILED:
            raise AllocationError("Cannot edit a reconciled allocation")

        sold = {it["product_id"]: it["sold"] for it in alloc.allocated_items}
        below = [
            {"product_id": pid, "sold": sold_qty, "requested": quantities.get(pid, 0)}
            for pid, sold_qty in sold.items()
            if quantities.get(pid, 0) < sold_qty
        ]
        if below:
            raise AllocationError("Quantity cannot be less than the amount already sold", details={"items": below})

        # Only the increase over the previous quantity has to come from the warehouse
        previous = {it["product_id"]: it["quantity"] for it in alloc.allocated_items}
        increases = {
            pid: qty - previous.get(pid, 0)
            for pid, qty in quantities.items()
            if qty > previous.get(pid, 0)
        }
        if increases:
            _check_warehouse(increases)

        alloc.allocated_items = [
            {"product_id": pid, "quantity": qty, "sold": sold.get(pid, 0)}
            for pid, qty in sorted(quantities.items())
        ]
        alloc.sales_total_cents = _sales_total_cents(alloc.allocated_items)

        append_order_event(
            event_type="allocation.updated",
            entity_type="allocation",
            entity_id=alloc.id,
            actor_user_id=actor.id,
            payload={"items": alloc.allocated_items},
        )
        return alloc

    return run_in_transaction(_op)


def close_allocation(actor: User, allocation_id: int) -> DriverAllocation:
    """
    Reconcile an allocation at the end of the selling period.

    Unsold quantities are recorded in returned_items. They are not added back
    to warehouse stock, which was never deducted for them.
    """
    def _op() -> DriverAllocation:
        alloc = lock_for_update(db.session.query(DriverAllocation).filter_by(id=allocation_id)).first()
        if not alloc:
            raise NotFoundError(f"Allocation {allocation_id} not found")
        if alloc.status == ALLOCATION_RECONCILED:
            raise AllocationError("Allocation is already reconciled")

        items = alloc.allocated_items
        alloc.returned_items = [
            {"product_id": it["product_id"], "quantity": it["quantity"] - it["sold"]}
            for it in items
            if it["quantity"] > it["sold"]
        ]
        alloc.sales_total_cents = _sales_total_cents(items)
        alloc.status = ALLOCATION_RECONCILED

        append_order_event(
            event_type="allocation.reconciled",
            entity_type="allocation",
            entity_id=alloc.id,
            actor_user_id=actor.id,
            note=f"Allocation for {alloc.driver_name} reconciled",
            payload={"returned_items": alloc.returned_items, "sales_total_cents": alloc.sales_total_cents},
        )
        return alloc

    return run_in_transaction(_op)


def get_allocation(allocation_id: int) -> DriverAllocation:
    alloc = db.session.get(DriverAllocation, allocation_id)
    if not alloc:
        raise NotFoundError(f"Allocation {allocation_id} not found")
    return alloc


def list_allocations(*, driver_id: int | None = None, status: str | None = None) -> list[DriverAllocation]:
    query = db.session.query(DriverAllocation)
    if driver_id:
        query = query.filter(DriverAllocation.driver_id == driver_id)
    if status:
        query = query.filter(DriverAllocation.status == status)
    return query.order_by(DriverAllocation.date.desc(), DriverAllocation.id.desc()).all()


def driver_stock(driver_id: int, product_id: int | None = None) -> dict[int, int]:
    """Remaining allocated stock for a driver, optionally for one product."""
    if product_id is not None:
        return {product_id: driver_available_stock(driver_id, product_id)}
    return driver_stock_map(driver_id)
