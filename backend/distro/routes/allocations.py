# Overview: Flask API routes for driver allocations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services import allocation_service
from ..services.allocation_service import AllocationError
from ..validation import ValidationError, NotFoundError, coerce_int
from ..decorators import require_actor, require_permission
from .. import permissions


allocations_bp = Blueprint("allocations", __name__, url_prefix="/api/allocations")


def _error(exc: Exception, status: int):
    return jsonify({"error": str(exc), "details": getattr(exc, "details", {})}), status


def _store_error(exc: SQLAlchemyError, action: str):
    """Database failures carry the driver message back to the caller."""
    db.session.rollback()
    current_app.logger.exception("Database error while trying to %s", action)
    return jsonify({"error": f"Database error: {getattr(exc, 'orig', None) or exc}"}), 500


@allocations_bp.get("")
@require_actor
@require_permission(permissions.VIEW_ALLOCATIONS)
def list_allocations_route():
    """
    List allocations, newest first.

    Drivers only ever see their own allocations.

    Query params:
    - driver_id: int (ignored for drivers)
    - status: Allocated | Delivered | Reconciled
    """
    try:
        if g.current_user.is_driver:
            driver_id = g.current_user.id
        else:
            raw = request.args.get("driver_id")
            driver_id = coerce_int(raw, "driver_id", minimum=1) if raw else None

        allocations = allocation_service.list_allocations(
            driver_id=driver_id, status=request.args.get("status"),
        )
        result = {"allocations": [a.to_dict() for a in allocations]}
        if driver_id:
            stock = allocation_service.driver_stock(driver_id)
            result["available"] = {str(pid): qty for pid, qty in stock.items()}
        return jsonify(result), 200

    except ValidationError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "list allocations")
    except Exception:
        current_app.logger.exception("Failed to list allocations")
        return jsonify({"error": "Internal server error"}), 500


@allocations_bp.get("/<int:allocation_id>")
@require_actor
@require_permission(permissions.VIEW_ALLOCATIONS)
def get_allocation_route(allocation_id: int):
    """One allocation with its remaining stock. Drivers can only read their own."""
    try:
        alloc = allocation_service.get_allocation(allocation_id)
        if g.current_user.is_driver and alloc.driver_id != g.current_user.id:
            return jsonify({"error": f"Allocation {allocation_id} not found"}), 404

        payload = alloc.to_dict()
        payload["remaining"] = {
            str(it["product_id"]): max(0, it["quantity"] - it["sold"])
            for it in alloc.allocated_items
        }
        return jsonify({"allocation": payload}), 200

    except NotFoundError as e:
        return _error(e, 404)
    except SQLAlchemyError as e:
        return _store_error(e, "load allocation")
    except Exception:
        current_app.logger.exception("Failed to load allocation")
        return jsonify({"error": "Internal server error"}), 500


@allocations_bp.post("")
@require_actor
@require_permission(permissions.MANAGE_ALLOCATIONS)
def create_allocation_route():
    """
    Allocate warehouse stock to a driver.

    Request body:
    {
        "driver_id": 4,
        "date": "2026-10-17",
        "items": [{"product_id": 12, "quantity": 20}]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        driver_id = coerce_int(data.get("driver_id"), "driver_id", minimum=1)
        alloc = allocation_service.create_allocation(
            g.current_user, driver_id, data.get("items"), data.get("date"),
        )
        return jsonify({"allocation": alloc.to_dict()}), 201

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except AllocationError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "create allocation")
    except Exception:
        current_app.logger.exception("Failed to create allocation")
        return jsonify({"error": "Internal server error"}), 500


@allocations_bp.put("/<int:allocation_id>")
@require_actor
@require_permission(permissions.MANAGE_ALLOCATIONS)
def update_allocation_route(allocation_id: int):
    """Request body: {"items": [{"product_id": 12, "quantity": 25}]}"""
    try:
        data = request.get_json(silent=True) or {}
        alloc = allocation_service.update_allocation(g.current_user, allocation_id, data.get("items"))
        return jsonify({"allocation": alloc.to_dict()}), 200

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except AllocationError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "update allocation")
    except Exception:
        current_app.logger.exception("Failed to update allocation")
        return jsonify({"error": "Internal server error"}), 500


@allocations_bp.post("/<int:allocation_id>/close")
@require_actor
@require_permission(permissions.MANAGE_ALLOCATIONS)
def close_allocation_route(allocation_id: int):
    try:
        alloc = allocation_service.close_allocation(g.current_user, allocation_id)
        return jsonify({"allocation": alloc.to_dict()}), 200

    except NotFoundError as e:
        return _error(e, 404)
    except AllocationError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "close allocation")
    except Exception:
        current_app.logger.exception("Failed to close allocation")
        return jsonify({"error": "Internal server error"}), 500
