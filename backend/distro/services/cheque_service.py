# Overview: Received cheques; recording them against a cheque collection, then clearing or bouncing them.

"""
Cheque Tracking

A cheque collection closes once the cheques covering it are in hand. The
order's cheque balance only turns into amount paid when each cheque clears
at the bank; a bounced cheque leaves the balance outstanding.

INVARIANTS:
- Received is the only non-final status; Cleared and Bounced never change again.
- Clearing moves min(cheque amount, cheque balance) so the balance never goes
  negative, and amount paid grows by exactly what the balance lost.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Cheque, CollectionRecord, Order, User
from ..models.cheques import CHEQUE_RECEIVED, CHEQUE_CLEARED, CHEQUE_BOUNCED
from ..validation import NotFoundError, ValidationError, coerce_int, MAX_AMOUNT_CENTS
from distro.time_utils import parse_iso_date, utcnow
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_order_event


REQUIRED_CHEQUE_FIELDS = ("payer_name", "bank", "cheque_number", "cheque_date")


class ChequeError(Exception):
    """Raised for cheque state errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _date(value, field: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def parse_cheque_details(raw) -> list[dict]:
    """
    Validate the cheque list sent with a cheque collection.

    Every cheque needs payer, bank, number, cheque date and a positive amount;
    deposit date and notes are optional.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError("At least one cheque is required to complete a cheque collection")

    cheques = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"cheques[{index}] must be an object")
        missing = [f for f in REQUIRED_CHEQUE_FIELDS if not str(entry.get(f) or "").strip()]
        if missing:
            raise ValidationError(
                f"cheques[{index}] is missing required fields: {', '.join(missing)}"
            )
        cheques.append({
            "payer_name": str(entry["payer_name"]).strip(),
            "bank": str(entry["bank"]).strip(),
            "cheque_number": str(entry["cheque_number"]).strip(),
            "cheque_date": _date(entry["cheque_date"], f"cheques[{index}].cheque_date"),
            "deposit_date": _date(entry.get("deposit_date"), f"cheques[{index}].deposit_date"),
            "amount_cents": coerce_int(
                entry.get("amount_cents"), f"cheques[{index}].amount_cents",
                minimum=1, maximum=MAX_AMOUNT_CENTS,
            ),
            "notes": (str(entry["notes"]).strip() or None) if entry.get("notes") else None,
        })
    return cheques


def record_cheques(record: CollectionRecord, order: Order, cheques: list[dict], actor: User) -> list[Cheque]:
    """Add Received cheques for a collection. Runs inside the caller's transaction."""
    rows = []
    for details in cheques:
        cheque = Cheque(
            collection_id=record.id,
            order_id=order.id,
            customer_id=order.customer_id,
            status=CHEQUE_RECEIVED,
            created_by_user_id=actor.id,
            **details,
        )
        db.session.add(cheque)
        rows.append(cheque)
    db.session.flush()
    return rows


def list_cheques(
    *,
    status: str | None = None,
    order_id: int | None = None,
    collection_id: int | None = None,
) -> list[Cheque]:
    query = db.session.query(Cheque)
    if status:
        query = query.filter(Cheque.status == status)
    if order_id:
        query = query.filter(Cheque.order_id == order_id)
    if collection_id:
        query = query.filter(Cheque.collection_id == collection_id)
    return query.order_by(Cheque.deposit_date.asc(), Cheque.id.asc()).all()


def _locked_received(cheque_id: int) -> tuple[Cheque, Order]:
    cheque = lock_for_update(db.session.query(Cheque).filter_by(id=cheque_id)).first()
    if not cheque:
        raise NotFoundError(f"Cheque {cheque_id} not found")
    if cheque.status != CHEQUE_RECEIVED:
        raise ChequeError(f"Cheque {cheque_id} is already {cheque.status}")
    order = lock_for_update(db.session.query(Order).filter_by(id=cheque.order_id)).first()
    if not order:
        raise NotFoundError(f"Order {cheque.order_id} not found")
    return cheque, order


def clear_cheque(cheque_id: int, actor: User) -> Cheque:
    """Mark a cheque Cleared and move its amount from cheque balance to amount paid."""
    def _op() -> Cheque:
        cheque, order = _locked_received(cheque_id)

        moved = min(cheque.amount_cents, order.cheque_balance_cents)
        order.cheque_balance_cents -= moved
        order.amount_paid_cents += moved

        cheque.status = CHEQUE_CLEARED
        cheque.cleared_at = utcnow()

        append_order_event(
            event_type="cheque.cleared",
            entity_type="cheque",
            entity_id=cheque.id,
            order_id=order.id,
            actor_user_id=actor.id,
            occurred_at=cheque.cleared_at,
            note=f"Cheque {cheque.cheque_number} cleared",
            payload={"amount_cents": cheque.amount_cents, "moved_cents": moved},
        )
        return cheque

    return run_in_transaction(_op)


def bounce_cheque(cheque_id: int, actor: User, notes: str | None = None) -> Cheque:
    """Mark a cheque Bounced; the order's cheque balance stays outstanding."""
    def _op() -> Cheque:
        cheque, order = _locked_received(cheque_id)

        cheque.status = CHEQUE_BOUNCED
        cheque.bounced_at = utcnow()
        if notes:
            cheque.notes = f"{cheque.notes} | {notes}" if cheque.notes else notes

        append_order_event(
            event_type="cheque.bounced",
            entity_type="cheque",
            entity_id=cheque.id,
            order_id=order.id,
            actor_user_id=actor.id,
            occurred_at=cheque.bounced_at,
            note=f"Cheque {cheque.cheque_number} bounced",
            payload={"amount_cents": cheque.amount_cents},
        )
        return cheque

    return run_in_transaction(_op)
