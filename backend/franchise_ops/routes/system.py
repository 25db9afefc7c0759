# backend/franchise_ops/routes/system.py
"""
System health endpoint.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import FranchiseLocation, Order, Product
from franchise_ops.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Database connectivity plus a few row counts."""
    start_time = time.time()
    try:
        details = {
            "locations": db.session.query(FranchiseLocation).count(),
            "products": db.session.query(Product).count(),
            "orders": db.session.query(Order).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "checked_at": to_utc_z(utcnow()),
        "database": database,
    }), (200 if healthy else 503)
