# Overview: Collection records (pending cheque/credit receivables) and their verification workflow.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CollectionRecord, Order, User
from ..models.orders import (
    COLLECTION_CHEQUE,
    COLLECTION_CREDIT,
    COLLECTION_PENDING,
    COLLECTION_COMPLETE,
    VALID_COLLECTION_TYPES,
)
from ..validation import NotFoundError, ValidationError
from distro.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_order_event
from .cheque_service import parse_cheque_details, record_cheques


class CollectionError(Exception):
    """Raised for collection operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _assignee_name(order: Order) -> str:
    if not order.assigned_user_id:
        return ""
    user = db.session.get(User, order.assigned_user_id)
    return user.name if user else ""


def upsert_collection(
    order: Order,
    collection_type: str,
    amount_cents: int,
    *,
    collected_by: str,
    actor_user_id: int | None = None,
) -> CollectionRecord:
    """
    Create or refresh the single record for (order, collection_type).

    A refreshed record goes back to pending with the new amount. Runs inside
    the caller's transaction.
    """
    if collection_type not in VALID_COLLECTION_TYPES:
        raise ValidationError(f"Invalid collection_type: {collection_type}")

    def _apply(record: CollectionRecord) -> CollectionRecord:
        record.customer_id = order.customer_id
        record.amount_cents = amount_cents
        record.status = COLLECTION_PENDING
        record.collected_by = collected_by
        return record

    existing = (
        db.session.query(CollectionRecord)
        .filter_by(order_id=order.id, collection_type=collection_type)
        .first()
    )
    if existing:
        return _apply(existing)

    record = CollectionRecord(
        order_id=order.id,
        collection_type=collection_type,
        created_by_user_id=actor_user_id,
    )
    _apply(record)
    try:
        with db.session.begin_nested():
            db.session.add(record)
    except IntegrityError:
        # Another writer inserted the same (order, type) first
        existing = (
            db.session.query(CollectionRecord)
            .filter_by(order_id=order.id, collection_type=collection_type)
            .one()
        )
        return _apply(existing)
    return record


def publish_collections(order: Order, actor: User | None = None) -> list[CollectionRecord]:
    """
    Upsert pending records for the order's non-zero cheque and credit balances.

    Zero balances neither create nor remove records: a record left over from
    an earlier non-zero balance stays until the verification workflow closes it.
    """
    collected_by = _assignee_name(order)
    actor_id = actor.id if actor else None
    records = []
    if order.cheque_balance_cents > 0:
        records.append(upsert_collection(
            order, COLLECTION_CHEQUE, order.cheque_balance_cents,
            collected_by=collected_by, actor_user_id=actor_id,
        ))
    if order.credit_balance_cents > 0:
        records.append(upsert_collection(
            order, COLLECTION_CREDIT, order.credit_balance_cents,
            collected_by=collected_by, actor_user_id=actor_id,
        ))
    db.session.flush()
    return records


def list_collections(
    *,
    status: str | None = None,
    collection_type: str | None = None,
    order_id: int | None = None,
    customer_id: int | None = None,
) -> list[CollectionRecord]:
    query = db.session.query(CollectionRecord)
    if status:
        query = query.filter(CollectionRecord.status == status)
    if collection_type:
        query = query.filter(CollectionRecord.collection_type == collection_type)
    if order_id:
        query = query.filter(CollectionRecord.order_id == order_id)
    if customer_id:
        query = query.filter(CollectionRecord.customer_id == customer_id)
    return query.order_by(CollectionRecord.created_at.desc(), CollectionRecord.id.desc()).all()


def _locked_pending(collection_id: int) -> tuple[CollectionRecord, Order]:
    record = lock_for_update(db.session.query(CollectionRecord).filter_by(id=collection_id)).first()
    if not record:
        raise NotFoundError(f"Collection {collection_id} not found")
    if record.status != COLLECTION_PENDING:
        raise CollectionError(f"Collection {collection_id} is already {record.status}")
    order = lock_for_update(db.session.query(Order).filter_by(id=record.order_id)).first()
    if not order:
        raise NotFoundError(f"Order {record.order_id} not found")
    return record, order


def complete_collection(
    collection_id: int,
    actor: User,
    notes: str | None = None,
    cheques: list[dict] | None = None,
) -> CollectionRecord:
    """
    Verify a pending collection as received.

    Credit: the amount moves into the order's amount paid and the credit
    balance is cleared. Cheque: the cheques handed over are recorded as
    Received and the record closes; the order's cheque balance only moves
    when each cheque is cleared (see cheque_service.clear_cheque).
    """
    def _op() -> CollectionRecord:
        record, order = _locked_pending(collection_id)

        received = []
        if record.collection_type == COLLECTION_CREDIT:
            if cheques:
                raise ValidationError("Cheque details only apply to cheque collections")
            order.amount_paid_cents += record.amount_cents
            order.credit_balance_cents = 0
        else:
            received = record_cheques(record, order, parse_cheque_details(cheques), actor)

        record.status = COLLECTION_COMPLETE
        record.notes = notes
        record.completed_by = actor.name
        record.completed_at = utcnow()

        append_order_event(
            event_type="collection.completed",
            entity_type="collection",
            entity_id=record.id,
            order_id=order.id,
            actor_user_id=actor.id,
            occurred_at=record.completed_at,
            note=f"{record.collection_type.upper()} collection completed by {actor.name}",
            payload={
                "amount_cents": record.amount_cents,
                "cheque_ids": [c.id for c in received],
            },
        )
        return record

    return run_in_transaction(_op)


def record_partial_payment(
    collection_id: int,
    actor: User,
    amount_cents: int,
    notes: str | None = None,
) -> CollectionRecord:
    """
    Take part of a pending collection; the record keeps the remainder.

    0 < amount < record amount. For credit collections the same amount moves
    from the order's credit balance into amount paid.
    """
    def _op() -> CollectionRecord:
        record, order = _locked_pending(collection_id)

        if amount_cents <= 0 or amount_cents >= record.amount_cents:
            raise CollectionError(
                "Partial amount must be greater than 0 and less than the collection amount",
                details={"amount_cents": amount_cents, "collection_amount_cents": record.amount_cents},
            )

        remaining = record.amount_cents - amount_cents
        record.amount_cents = remaining
        record.notes = (
            f"Partial payment of {amount_cents} cents received. Remaining: {remaining} cents."
            + (f" Notes: {notes}" if notes else "")
        )

        if record.collection_type == COLLECTION_CREDIT:
            taken = min(amount_cents, order.credit_balance_cents)
            order.credit_balance_cents -= taken
            order.amount_paid_cents += taken

        append_order_event(
            event_type="collection.partial_payment",
            entity_type="collection",
            entity_id=record.id,
            order_id=order.id,
            actor_user_id=actor.id,
            payload={"amount_cents": amount_cents, "remaining_cents": remaining},
        )
        return record

    return run_in_transaction(_op)
