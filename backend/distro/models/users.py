from __future__ import annotations

from ..extensions import db
from distro.time_utils import to_utc_z


ROLE_ADMIN = "Admin"
ROLE_SECRETARY = "Secretary"
ROLE_MANAGER = "Manager"
ROLE_SALES = "Sales Rep"
ROLE_DRIVER = "Driver"

VALID_ROLES = [ROLE_ADMIN, ROLE_SECRETARY, ROLE_MANAGER, ROLE_SALES, ROLE_DRIVER]

STATUS_ACTIVE = "Active"
STATUS_INACTIVE = "Inactive"


class User(db.Model):
    """
    Staff member acting on orders.

    The role decides which stock an actor sells from: drivers sell from their
    own allocations, everyone else from the warehouse.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_status", "role", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=True)
    role = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_ACTIVE)

    password_hash = db.Column(db.String(255), nullable=True)

    # Notification preference for orders assigned to this user
    notify_new_orders = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def is_driver(self) -> bool:
        return self.role == ROLE_DRIVER

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "status": self.status,
            "notify_new_orders": self.notify_new_orders,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
