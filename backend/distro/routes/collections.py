# Overview: Flask API routes for collections and received cheques; listing and the verification workflow.

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services import collection_service, cheque_service
from ..services.collection_service import CollectionError
from ..services.cheque_service import ChequeError
from ..validation import ValidationError, NotFoundError, coerce_int
from ..decorators import require_actor, require_permission
from .. import permissions


collections_bp = Blueprint("collections", __name__, url_prefix="/api/collections")
cheques_bp = Blueprint("cheques", __name__, url_prefix="/api/cheques")


def _error(exc: Exception, status: int):
    return jsonify({"error": str(exc), "details": getattr(exc, "details", {})}), status


def _store_error(exc: SQLAlchemyError, action: str):
    """Database failures carry the driver message back to the caller."""
    db.session.rollback()
    current_app.logger.exception("Database error while trying to %s", action)
    return jsonify({"error": f"Database error: {getattr(exc, 'orig', None) or exc}"}), 500


# =============================================================================
# COLLECTIONS
# =============================================================================

@collections_bp.get("")
@require_actor
@require_permission(permissions.VIEW_COLLECTIONS)
def list_collections_route():
    """
    Query params:
    - status: pending | complete
    - type: credit | cheque
    - order_id, customer_id
    """
    try:
        order_id = request.args.get("order_id")
        customer_id = request.args.get("customer_id")
        records = collection_service.list_collections(
            status=request.args.get("status"),
            collection_type=request.args.get("type"),
            order_id=coerce_int(order_id, "order_id", minimum=1) if order_id else None,
            customer_id=coerce_int(customer_id, "customer_id", minimum=1) if customer_id else None,
        )
        return jsonify({
            "collections": [r.to_dict() for r in records],
            "total_cents": sum(r.amount_cents for r in records),
        }), 200

    except ValidationError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "list collections")
    except Exception:
        current_app.logger.exception("Failed to list collections")
        return jsonify({"error": "Internal server error"}), 500


@collections_bp.post("/<int:collection_id>/complete")
@require_actor
@require_permission(permissions.VERIFY_COLLECTIONS)
def complete_collection_route(collection_id: int):
    """
    Request body:
    {
        "notes": "...",                                   (optional)
        "cheques": [                                      (cheque collections only)
            {
                "payer_name": "Corner Shop",
                "bank": "First Bank",
                "cheque_number": "000123",
                "cheque_date": "2026-10-17",
                "deposit_date": "2026-10-24",             (optional)
                "amount_cents": 30000,
                "notes": "..."                            (optional)
            }
        ]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        record = collection_service.complete_collection(
            collection_id, g.current_user, data.get("notes"), data.get("cheques"),
        )
        return jsonify({
            "collection": record.to_dict(),
            "order": record.order.to_dict(),
            "cheques": [c.to_dict() for c in record.cheques],
        }), 200

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except CollectionError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "complete collection")
    except Exception:
        current_app.logger.exception("Failed to complete collection")
        return jsonify({"error": "Internal server error"}), 500


@collections_bp.post("/<int:collection_id>/partial")
@require_actor
@require_permission(permissions.VERIFY_COLLECTIONS)
def partial_payment_route(collection_id: int):
    """Request body: {"amount_cents": 2500, "notes": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        amount = coerce_int(data.get("amount_cents"), "amount_cents", minimum=1)
        record = collection_service.record_partial_payment(
            collection_id, g.current_user, amount, data.get("notes"),
        )
        return jsonify({"collection": record.to_dict(), "order": record.order.to_dict()}), 200

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except CollectionError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "record partial payment")
    except Exception:
        current_app.logger.exception("Failed to record partial payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CHEQUES
# =============================================================================

@cheques_bp.get("")
@require_actor
@require_permission(permissions.VIEW_COLLECTIONS)
def list_cheques_route():
    """
    Query params:
    - status: Received | Cleared | Bounced
    - order_id, collection_id
    """
    try:
        order_id = request.args.get("order_id")
        collection_id = request.args.get("collection_id")
        cheques = cheque_service.list_cheques(
            status=request.args.get("status"),
            order_id=coerce_int(order_id, "order_id", minimum=1) if order_id else None,
            collection_id=coerce_int(collection_id, "collection_id", minimum=1) if collection_id else None,
        )
        return jsonify({
            "cheques": [c.to_dict() for c in cheques],
            "total_cents": sum(c.amount_cents for c in cheques),
        }), 200

    except ValidationError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "list cheques")
    except Exception:
        current_app.logger.exception("Failed to list cheques")
        return jsonify({"error": "Internal server error"}), 500


@cheques_bp.post("/<int:cheque_id>/clear")
@require_actor
@require_permission(permissions.VERIFY_COLLECTIONS)
def clear_cheque_route(cheque_id: int):
    try:
        cheque = cheque_service.clear_cheque(cheque_id, g.current_user)
        return jsonify({"cheque": cheque.to_dict(), "order": cheque.order.to_dict()}), 200

    except NotFoundError as e:
        return _error(e, 404)
    except ChequeError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "clear cheque")
    except Exception:
        current_app.logger.exception("Failed to clear cheque")
        return jsonify({"error": "Internal server error"}), 500


@cheques_bp.post("/<int:cheque_id>/bounce")
@require_actor
@require_permission(permissions.VERIFY_COLLECTIONS)
def bounce_cheque_route(cheque_id: int):
    """Request body: {"notes": "..."} (optional)"""
    try:
        data = request.get_json(silent=True) or {}
        cheque = cheque_service.bounce_cheque(cheque_id, g.current_user, data.get("notes"))
        return jsonify({"cheque": cheque.to_dict(), "order": cheque.order.to_dict()}), 200

    except NotFoundError as e:
        return _error(e, 404)
    except ChequeError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "bounce cheque")
    except Exception:
        current_app.logger.exception("Failed to bounce cheque")
        return jsonify({"error": "Internal server error"}), 500
