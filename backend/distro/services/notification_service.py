# Overview: Fire-and-forget new-order notifications.

"""
New-order notifications

Delivery is best effort: every failure is logged and swallowed so it can never
fail the order write that triggered it. With NOTIFY_WEBHOOK_URL configured the
message is POSTed there as JSON (an email relay sits behind it); otherwise it
is only written to the application log.
"""

from __future__ import annotations

import threading

import httpx
from flask import current_app

from ..models import Order, User


def build_new_order_message(order: Order, recipient: User) -> dict:
    return {
        "type": "order.created",
        "to": recipient.email,
        "recipient_name": recipient.name,
        "subject": f"New Order Received - {order.order_number}",
        "order": {
            "id": order.id,
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "total_cents": order.total_cents,
            "status": order.status,
            "order_date": order.order_date.isoformat() if order.order_date else None,
        },
    }


def _deliver(app, message: dict) -> bool:
    url = app.config.get("NOTIFY_WEBHOOK_URL")
    try:
        if not url:
            app.logger.info("New order notification for %s: %s", message["to"], message["subject"])
            return True
        response = httpx.post(url, json=message, timeout=app.config.get("NOTIFY_TIMEOUT_SECONDS", 5))
        response.raise_for_status()
        return True
    except Exception:
        app.logger.exception("Failed to deliver new order notification to %s", message.get("to"))
        return False


def notify_new_order(order: Order, recipient: User | None) -> bool:
    """
    Notify the user an order was created for, honoring their preference.

    Returns whether a delivery was attempted and succeeded (always False when
    dispatched to a background thread, since the outcome is not awaited).
    """
    app = current_app._get_current_object()
    try:
        if recipient is None or not recipient.notify_new_orders:
            return False
        message = build_new_order_message(order, recipient)
    except Exception:
        app.logger.exception("Failed to build new order notification for order %s", order.id)
        return False

    if app.config.get("NOTIFICATIONS_ASYNC"):
        threading.Thread(target=_deliver, args=(app, message), daemon=True).start()
        return False
    return _deliver(app, message)
