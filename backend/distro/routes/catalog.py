# Overview: Flask API routes for products and customers; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services import catalog_service
from ..services.catalog_service import CatalogError
from ..services.stock_service import net_available_map
from ..validation import ValidationError, ConflictError, NotFoundError, coerce_int
from ..decorators import require_actor, require_permission
from .. import permissions


products_bp = Blueprint("products", __name__, url_prefix="/api/products")
customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _error(exc: Exception, status: int):
    return jsonify({"error": str(exc), "details": getattr(exc, "details", {})}), status


def _store_error(exc: SQLAlchemyError, action: str):
    """Database failures carry the driver message back to the caller."""
    db.session.rollback()
    current_app.logger.exception("Database error while trying to %s", action)
    return jsonify({"error": f"Database error: {getattr(exc, 'orig', None) or exc}"}), 500


# =============================================================================
# PRODUCTS
# =============================================================================

@products_bp.get("")
@require_actor
@require_permission(permissions.VIEW_CATALOG)
def list_products_route():
    """
    List products with the acting user's net availability.

    available = effective stock (own allocations for drivers, warehouse
    otherwise) minus what Pending orders reserve. Pass exclude_order_id while
    editing an order so its own reservation is not counted.
    """
    try:
        include_inactive = request.args.get("include_inactive", "false").lower() == "true"
        exclude = request.args.get("exclude_order_id")
        exclude_order_id = coerce_int(exclude, "exclude_order_id", minimum=1) if exclude else None

        products = catalog_service.list_products(include_inactive=include_inactive)
        available = net_available_map(g.current_user, products, exclude_order_id=exclude_order_id)

        items = []
        for product in products:
            row = product.to_dict()
            row["available"] = available.get(product.id, 0)
            items.append(row)
        return jsonify({"products": items}), 200

    except ValidationError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "list products")
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_actor
@require_permission(permissions.MANAGE_CATALOG)
def create_product_route():
    try:
        product = catalog_service.create_product(request.get_json(silent=True) or {})
        return jsonify({"product": product.to_dict()}), 201
    except ValidationError as e:
        return _error(e, 400)
    except ConflictError as e:
        return _error(e, 409)
    except SQLAlchemyError as e:
        return _store_error(e, "create product")
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_actor
@require_permission(permissions.MANAGE_CATALOG)
def update_product_route(product_id: int):
    try:
        product = catalog_service.update_product(product_id, request.get_json(silent=True) or {})
        return jsonify({"product": product.to_dict()}), 200
    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except ConflictError as e:
        return _error(e, 409)
    except SQLAlchemyError as e:
        return _store_error(e, "update product")
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/adjust")
@require_actor
@require_permission(permissions.MANAGE_CATALOG)
def adjust_stock_route(product_id: int):
    """Request body: {"delta": -3, "reason": "damaged"}"""
    try:
        data = request.get_json(silent=True) or {}
        delta = coerce_int(data.get("delta"), "delta")
        product = catalog_service.adjust_stock(g.current_user, product_id, delta, data.get("reason"))
        return jsonify({"product": product.to_dict()}), 200

    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except CatalogError as e:
        return _error(e, 400)
    except SQLAlchemyError as e:
        return _store_error(e, "adjust stock")
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CUSTOMERS
# =============================================================================

@customers_bp.get("")
@require_actor
@require_permission(permissions.VIEW_CATALOG)
def list_customers_route():
    try:
        customers = catalog_service.list_customers(route=request.args.get("route"))
        return jsonify({"customers": [c.to_dict() for c in customers]}), 200
    except SQLAlchemyError as e:
        return _store_error(e, "list customers")
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("")
@require_actor
@require_permission(permissions.CREATE_ORDER)
def create_customer_route():
    try:
        customer = catalog_service.create_customer(g.current_user, request.get_json(silent=True) or {})
        return jsonify({"customer": customer.to_dict()}), 201
    except ValidationError as e:
        return _error(e, 400)
    except ConflictError as e:
        return _error(e, 409)
    except SQLAlchemyError as e:
        return _store_error(e, "create customer")
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>")
@require_actor
@require_permission(permissions.MANAGE_CATALOG)
def update_customer_route(customer_id: int):
    try:
        customer = catalog_service.update_customer(customer_id, request.get_json(silent=True) or {})
        return jsonify({"customer": customer.to_dict()}), 200
    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except ConflictError as e:
        return _error(e, 409)
    except SQLAlchemyError as e:
        return _store_error(e, "update customer")
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>/discounts")
@require_actor
@require_permission(permissions.MANAGE_CATALOG)
def set_discounts_route(customer_id: int):
    """Request body: {"discounts": {"12": 10}}"""
    try:
        data = request.get_json(silent=True) or {}
        customer = catalog_service.set_customer_discounts(customer_id, data.get("discounts"))
        return jsonify({"customer": customer.to_dict()}), 200
    except ValidationError as e:
        return _error(e, 400)
    except NotFoundError as e:
        return _error(e, 404)
    except SQLAlchemyError as e:
        return _store_error(e, "set customer discounts")
    except Exception:
        current_app.logger.exception("Failed to set customer discounts")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/outstanding")
@require_actor
@require_permission(permissions.VIEW_COLLECTIONS)
def customer_outstanding_route(customer_id: int):
    try:
        return jsonify(catalog_service.customer_outstanding(customer_id)), 200
    except NotFoundError as e:
        return _error(e, 404)
    except SQLAlchemyError as e:
        return _store_error(e, "load customer outstanding")
    except Exception:
        current_app.logger.exception("Failed to load customer outstanding")
        return jsonify({"error": "Internal server error"}), 500
