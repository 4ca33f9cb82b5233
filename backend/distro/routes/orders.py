# Overview: Flask API routes for orders; creation, edits, status, delivery and balances.

# backend/distro/routes/orders.py
"""
Order API Routes

DESIGN:
- Create/edit run the stock split; a shortfall returns 400 with the itemized
  lines and nothing is written
- Finalize is idempotent: a Delivered order returns 200 with
  already_delivered=true
- Balance edits preview without writing; saving may require confirmation

SECURITY:
- All routes require an actor (X-Actor-Id)
- DELETE_ORDER additionally requires the actor's password in the body
"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services import order_service, fulfillment_service, balance_service
from ..services.order_service import (
    OrderError,
    InsufficientStockError,
    PasswordConfirmationError,
    SubmissionInProgressError,
)
from ..services.fulfillment_service import FulfillmentError
from ..services.balance_service import BalanceError, BalanceConfirmationRequired, BalanceInput
from ..services.ledger_service import list_order_events
from ..validation import ValidationError, NotFoundError, coerce_int
from ..decorators import require_actor, require_permission
from .. import permissions


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _error(exc: Exception, status: int):
    return jsonify({"error": str(exc), "details": getattr(exc, "details", {})}), status


def _store_error(exc: SQLAlchemyError, action: str):
    """Database failures carry the driver message back to the caller."""
    db.session.rollback()
    current_app.logger.exception("Database error while trying to %s", action)
    return jsonify({"error": f"Database error: {getattr(exc, 'orig', None) or exc}"}), 500


# =============================================================================
# ORDER CREATION / EDITING
# =============================================================================

@orders_bp.post("")
@require_actor
@require_permission(permissions.CREATE_ORDER)
def create_order_route():
    """
    Create an order for the acting user.

    Request body:
    {
        "customer_id": 7,
        "items": {"12": 5, "14": 2},
        "prices": {"12": 1500},          (optional, cents)
        "discounts": {"12": 10},         (optional, percent)
        "free": {"14": 1},               (optional)
        "held": [14],                    (optional, product ids)
        "expected_delivery_date": "2026-10-20",
        "delivery_address": "...",
        "notes": "..."
    }

    Returns:
        201: Order created
        400: Invalid input or insufficient stock (details.items lists shortfalls)
        404: Unknown customer
        409: Another save from the same actor is in flight
    """
    try:
        data = request.get_json(silent=True) or {}
        order_request = order_service.order_request_from_payload(data)
        order = order_service.create_order(g.current_user, order_request)
        return jsonify({"order": order.to_dict()}), 201

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except InsufficientStockError as e:
        return _error(e, 400)
    except SubmissionInProgressError as e:
        return _error(e, 409)
    except OrderError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "create order")
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>")
@require_actor
@require_permission(permissions.EDIT_ORDER)
def update_order_route(order_id: int):
    """Re-split and save an existing Pending or Shipped order. Same body as create."""
    try:
        data = request.get_json(silent=True) or {}
        order_request = order_service.order_request_from_payload(data)
        order = order_service.update_order(g.current_user, order_id, order_request)
        return jsonify({"order": order.to_dict()}), 200

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except InsufficientStockError as e:
        return _error(e, 400)
    except SubmissionInProgressError as e:
        return _error(e, 409)
    except OrderError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "update order")
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ORDER QUERIES
# =============================================================================

@orders_bp.get("")
@require_actor
@require_permission(permissions.VIEW_ORDERS)
def list_orders_route():
    """
    List orders, newest first.

    Query params:
    - status: Pending | Shipped | Delivered | Cancelled
    - customer_id, assigned_user_id
    """
    try:
        customer_id = request.args.get("customer_id")
        assigned_user_id = request.args.get("assigned_user_id")
        orders = order_service.list_orders(
            status=request.args.get("status"),
            customer_id=coerce_int(customer_id, "customer_id", minimum=1) if customer_id else None,
            assigned_user_id=coerce_int(assigned_user_id, "assigned_user_id", minimum=1) if assigned_user_id else None,
        )
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200

    except ValidationError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "list orders")
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_actor
@require_permission(permissions.VIEW_ORDERS)
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        payload = order.to_dict()
        payload["collections"] = [c.to_dict() for c in order.collections]
        payload["cheques"] = [c.to_dict() for c in order.cheques]
        return jsonify({"order": payload}), 200
    except NotFoundError as e:
        return _error(e, 404)
    except SQLAlchemyError as e:
        return _store_error(e, "load order")
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/events")
@require_actor
@require_permission(permissions.VIEW_ORDERS)
def order_events_route(order_id: int):
    try:
        events = list_order_events(order_id)
        return jsonify({"events": [ev.to_dict() for ev in events]}), 200

    except SQLAlchemyError as e:
        return _store_error(e, "list order events")
    except Exception:
        current_app.logger.exception("Failed to list order events")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATUS / DELIVERY / DELETE
# =============================================================================

@orders_bp.post("/<int:order_id>/status")
@require_actor
@require_permission(permissions.CHANGE_ORDER_STATUS)
def set_status_route(order_id: int):
    """Request body: {"status": "Shipped"}"""
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.set_status(g.current_user, order_id, data.get("status"))
        return jsonify({"order": order.to_dict()}), 200

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except OrderError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "change order status")
    except Exception:
        current_app.logger.exception("Failed to change order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/finalize")
@require_actor
@require_permission(permissions.FINALIZE_ORDER)
def finalize_order_route(order_id: int):
    """
    Mark an order Delivered and move stock.

    Returns:
        200: Delivered (or already delivered) with changed allocations and products
        400: Cancelled order, no items, or insufficient stock
        404: Unknown order
    """
    try:
        result = fulfillment_service.finalize_order(order_id, g.current_user)
        return jsonify(result.to_dict()), 200

    except NotFoundError as e:
        return _error(e, 404)
    except FulfillmentError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "finalize order")
    except Exception:
        current_app.logger.exception("Failed to finalize order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_actor
@require_permission(permissions.DELETE_ORDER)
def delete_order_route(order_id: int):
    """Request body: {"password": "..."} (the acting user's own password)"""
    try:
        data = request.get_json(silent=True) or {}
        order_service.delete_order(g.current_user, order_id, data.get("password"))
        return jsonify({"deleted": True, "order_id": order_id}), 200

    except PasswordConfirmationError as e:
        return _error(e, 403)
    except NotFoundError as e:
        return _error(e, 404)
    except SQLAlchemyError as e:
        return _store_error(e, "delete order")
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# BALANCES
# =============================================================================

@orders_bp.post("/<int:order_id>/balances/preview")
@require_actor
@require_permission(permissions.EDIT_BALANCES)
def preview_balances_route(order_id: int):
    """Derive the credit balance and diff hint without writing anything."""
    try:
        balances = BalanceInput.from_payload(request.get_json(silent=True) or {})
        return jsonify(balance_service.preview_balances(order_id, balances)), 200

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except SQLAlchemyError as e:
        return _store_error(e, "preview balances")
    except Exception:
        current_app.logger.exception("Failed to preview balances")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/balances")
@require_actor
@require_permission(permissions.EDIT_BALANCES)
def save_balances_route(order_id: int):
    """
    Save amount paid, cheque and return amounts; credit is derived.

    Request body:
    {
        "amount_paid_cents": 10000,
        "cheque_balance_cents": 5000,
        "return_amount_cents": 0,
        "confirm": false
    }

    Returns:
        200: Saved; collection records published
        409: Cheque + credit exceed the total; resend with confirm=true
    """
    try:
        data = request.get_json(silent=True) or {}
        balances = BalanceInput.from_payload(data)
        order = balance_service.save_balances(
            order_id, g.current_user, balances, confirm=bool(data.get("confirm")),
        )
        payload = order.to_dict()
        payload["collections"] = [c.to_dict() for c in order.collections]
        return jsonify({"order": payload}), 200

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except BalanceConfirmationRequired as e:
        return _error(e, 409)
    except BalanceError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "save balances")
    except Exception:
        current_app.logger.exception("Failed to save balances")
        return jsonify({"error": "Internal server error"}), 500
