from __future__ import annotations

from ..extensions import db
from ..serialization import load_json, dump_json, normalize_allocation_item
from distro.time_utils import to_utc_z, to_iso_date


ALLOCATION_ALLOCATED = "Allocated"
ALLOCATION_DELIVERED = "Delivered"
ALLOCATION_RECONCILED = "Reconciled"


class DriverAllocation(db.Model):
    """
    Stock handed to a driver for a selling period (one row per driver per day).

    Each allocated item carries a `sold` counter that only delivery
    reconciliation raises, never above the allocated quantity. A driver's
    available stock for a product is the sum of (quantity - sold) over their
    open allocations.

    Reconciled allocations are closed: their leftovers are recorded in
    returned_items and they stop counting toward availability.
    """
    __tablename__ = "driver_allocations"
    __table_args__ = (
        db.Index("ix_allocations_driver_date", "driver_id", "date"),
        db.Index("ix_allocations_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    driver_name = db.Column(db.String(255), nullable=False)
    date = db.Column(db.Date, nullable=False)

    allocated_items_json = db.Column("allocated_items", db.Text, nullable=False, default="[]")
    returned_items_json = db.Column("returned_items", db.Text, nullable=True)

    sales_total_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=ALLOCATION_ALLOCATED)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    driver = db.relationship("User", backref=db.backref("allocations", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def allocated_items(self) -> list[dict]:
        return [normalize_allocation_item(it) for it in load_json(self.allocated_items_json, [])]

    @allocated_items.setter
    def allocated_items(self, items: list[dict]) -> None:
        self.allocated_items_json = dump_json([normalize_allocation_item(it) for it in items])

    @property
    def returned_items(self) -> list[dict] | None:
        return load_json(self.returned_items_json, None)

    @returned_items.setter
    def returned_items(self, items: list[dict] | None) -> None:
        self.returned_items_json = dump_json(items) if items is not None else None

    def __repr__(self) -> str:
        return f"<DriverAllocation id={self.id} driver_id={self.driver_id} date={self.date} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "driver_id": self.driver_id,
            "driver_name": self.driver_name,
            "date": to_iso_date(self.date),
            "allocated_items": self.allocated_items,
            "returned_items": self.returned_items,
            "sales_total_cents": self.sales_total_cents,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
