from __future__ import annotations

from ..extensions import db
from distro.time_utils import to_utc_z, to_iso_date


CHEQUE_RECEIVED = "Received"
CHEQUE_CLEARED = "Cleared"
CHEQUE_BOUNCED = "Bounced"


class Cheque(db.Model):
    """
    A physical cheque taken against a cheque collection.

    Received -> Cleared moves the amount from the order's cheque balance into
    amount paid. Received -> Bounced leaves the balance outstanding. Both
    transitions are final.
    """
    __tablename__ = "cheques"
    __table_args__ = (
        db.Index("ix_cheques_status", "status"),
        db.Index("ix_cheques_deposit_date", "deposit_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    collection_id = db.Column(db.Integer, db.ForeignKey("collections.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    payer_name = db.Column(db.String(255), nullable=False)
    bank = db.Column(db.String(255), nullable=False)
    cheque_number = db.Column(db.String(64), nullable=False)
    cheque_date = db.Column(db.Date, nullable=False)
    deposit_date = db.Column(db.Date, nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=CHEQUE_RECEIVED)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cleared_at = db.Column(db.DateTime(timezone=True), nullable=True)
    bounced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    order = db.relationship("Order", backref=db.backref("cheques", lazy=True, cascade="all, delete-orphan"))
    collection = db.relationship("CollectionRecord", backref=db.backref("cheques", lazy=True))

    def __repr__(self) -> str:
        return f"<Cheque id={self.id} number={self.cheque_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "collection_id": self.collection_id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "payer_name": self.payer_name,
            "bank": self.bank,
            "cheque_number": self.cheque_number,
            "cheque_date": to_iso_date(self.cheque_date),
            "deposit_date": to_iso_date(self.deposit_date),
            "amount_cents": self.amount_cents,
            "notes": self.notes,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "cleared_at": to_utc_z(self.cleared_at) if self.cleared_at else None,
            "bounced_at": to_utc_z(self.bounced_at) if self.bounced_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
