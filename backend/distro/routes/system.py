# backend/distro/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether the live schema matches the models.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import User, Order
from ..services.schema_service import find_schema_drift
from distro.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        order_count = db.session.query(Order).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "orders": order_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_schema_health() -> dict:
    try:
        missing_tables, missing_columns = find_schema_drift()
    except Exception:
        current_app.logger.exception("Schema health check failed")
        return {"status": "unhealthy", "error": "Schema inspection failed"}

    if missing_tables or missing_columns:
        return {
            "status": "degraded",
            "warning": "Database schema is behind the models",
            "details": {"missing_tables": missing_tables, "missing_columns": missing_columns},
        }
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (schema drift is reported, not fatal)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    schema_health = check_schema_health()

    all_checks = [database_health, schema_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "schema": schema_health,
        }
    }

    return response, http_status
