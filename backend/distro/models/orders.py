from __future__ import annotations

from ..extensions import db
from ..serialization import load_json, dump_json, normalize_item
from distro.time_utils import to_utc_z, to_iso_date


ORDER_PENDING = "Pending"
ORDER_SHIPPED = "Shipped"
ORDER_DELIVERED = "Delivered"
ORDER_CANCELLED = "Cancelled"

VALID_ORDER_STATUSES = [ORDER_PENDING, ORDER_SHIPPED, ORDER_DELIVERED, ORDER_CANCELLED]

COLLECTION_CREDIT = "credit"
COLLECTION_CHEQUE = "cheque"
VALID_COLLECTION_TYPES = [COLLECTION_CREDIT, COLLECTION_CHEQUE]

COLLECTION_PENDING = "pending"
COLLECTION_COMPLETE = "complete"

# One cent, the tolerance of the four-way balance check
BALANCE_TOLERANCE_CENTS = 1


class Order(db.Model):
    """
    Customer order with fulfillable and backordered lines.

    LINES:
    - order_items: lines fulfilled on delivery (reserve stock while Pending)
    - backordered_items: held lines, either explicitly or because no net stock
      existed when the order was written
    Both are stored as JSON text; each line snapshots its price at order time.

    BALANCES:
    amount_paid + cheque_balance + credit_balance + return_amount should equal
    total. The rule is reported (see balance_diff_cents), never enforced by the
    database. credit_balance is always derived by the balance service.

    LIFECYCLE:
    Pending -> (Shipped) -> Delivered, exactly once. Cancelled is terminal.
    Deletion removes the row.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status", "status"),
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        db.Index("ix_orders_assigned_status", "assigned_user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number issued by the document sequence (e.g. "ORD-000042")
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    assigned_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING)

    order_items_json = db.Column("order_items", db.Text, nullable=False, default="[]")
    backordered_items_json = db.Column("backordered_items", db.Text, nullable=False, default="[]")

    order_date = db.Column(db.Date, nullable=False)
    expected_delivery_date = db.Column(db.Date, nullable=True)
    delivery_address = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    sold_quantity = db.Column(db.Integer, nullable=True)

    cheque_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    return_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    assigned_user = db.relationship("User", foreign_keys=[assigned_user_id])
    delivered_by = db.relationship("User", foreign_keys=[delivered_by_user_id])

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def order_items(self) -> list[dict]:
        return [normalize_item(it) for it in load_json(self.order_items_json, [])]

    @order_items.setter
    def order_items(self, items: list[dict]) -> None:
        self.order_items_json = dump_json([normalize_item(it) for it in items])

    @property
    def backordered_items(self) -> list[dict]:
        return [normalize_item(it) for it in load_json(self.backordered_items_json, [])]

    @backordered_items.setter
    def backordered_items(self, items: list[dict]) -> None:
        self.backordered_items_json = dump_json([normalize_item(it) for it in items])

    @property
    def balance_diff_cents(self) -> int:
        """total minus the four balance fields; non-zero means the split is off."""
        return self.total_cents - (
            self.amount_paid_cents
            + self.cheque_balance_cents
            + self.credit_balance_cents
            + self.return_amount_cents
        )

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        diff = self.balance_diff_cents
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "assigned_user_id": self.assigned_user_id,
            "status": self.status,
            "order_items": self.order_items,
            "backordered_items": self.backordered_items,
            "order_date": to_iso_date(self.order_date),
            "expected_delivery_date": to_iso_date(self.expected_delivery_date),
            "delivery_address": self.delivery_address,
            "notes": self.notes,
            "total_cents": self.total_cents,
            "cost_cents": self.cost_cents,
            "sold_quantity": self.sold_quantity,
            "cheque_balance_cents": self.cheque_balance_cents,
            "credit_balance_cents": self.credit_balance_cents,
            "return_amount_cents": self.return_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_diff_cents": diff,
            "is_balanced": abs(diff) <= BALANCE_TOLERANCE_CENTS,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "delivered_by_user_id": self.delivered_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CollectionRecord(db.Model):
    """
    Pending receivable (cheque or credit) published from an order's balances.

    Exactly one row per (order_id, collection_type): saving balances upserts,
    never appends. Rows are never retracted when a balance later drops to
    zero; closing them is the job of the verification workflow.
    """
    __tablename__ = "collections"
    __table_args__ = (
        db.UniqueConstraint("order_id", "collection_type", name="uq_collections_order_type"),
        db.Index("ix_collections_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    collection_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=COLLECTION_PENDING)

    collected_by = db.Column(db.String(255), nullable=False, default="")
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    completed_by = db.Column(db.String(255), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    order = db.relationship("Order", backref=db.backref("collections", lazy=True, cascade="all, delete-orphan"))

    def __repr__(self) -> str:
        return (
            f"<CollectionRecord id={self.id} order_id={self.order_id} "
            f"type={self.collection_type} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "collection_type": self.collection_type,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "collected_by": self.collected_by,
            "created_by_user_id": self.created_by_user_id,
            "completed_by": self.completed_by,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
