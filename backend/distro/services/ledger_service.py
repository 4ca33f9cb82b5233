# Overview: Append-only audit events for orders, allocations and collections.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import OrderEvent
from ..serialization import dump_json
from distro.time_utils import utcnow
"""
Order event invariants

- Append-only: no updates or deletes of existing events.
- No business logic here; callers decide what happened.
- Events are flushed inside the caller's transaction and commit with it.
"""


def append_order_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    order_id: int | None = None,
    actor_user_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> OrderEvent:
    ev = OrderEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        order_id=order_id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
        note=note[:255] if note else None,
        payload=dump_json(payload) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_order_events(order_id: int) -> list[OrderEvent]:
    return (
        db.session.query(OrderEvent)
        .filter_by(order_id=order_id)
        .order_by(OrderEvent.occurred_at.asc(), OrderEvent.id.asc())
        .all()
    )
