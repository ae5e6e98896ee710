# backend/posledger/routes/system.py
"""
System health and version endpoints, plus the branch low-stock view.

Health checks touch the database and the document sequence table so a
broken migration shows up before the first invoice fails to number.
"""

import sys
import time

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_tenant
from ..extensions import db
from ..models import Company, DocumentSequence
from ..services import inventory_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a cheap count query."""
    start_time = time.time()
    try:
        company_count = db.session.query(Company).count()
        sequence_count = db.session.query(DocumentSequence).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "companies": company_count,
                "document_sequences": sequence_count,
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


def check_notification_health() -> dict:
    """Low-stock alerts are optional; missing mail settings only degrade."""
    if not current_app.config.get("LOW_STOCK_ALERTS_ENABLED"):
        return {"status": "healthy", "details": {"low_stock_alerts": "disabled"}}
    if not current_app.config.get("MAIL_SERVER") or not current_app.config.get("LOW_STOCK_ALERT_RECIPIENT"):
        return {
            "status": "degraded",
            "warning": "Low stock alerts enabled without MAIL_SERVER or LOW_STOCK_ALERT_RECIPIENT",
        }
    return {"status": "healthy", "details": {"low_stock_alerts": "enabled"}}


@system_bp.get("/api/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    notification_health = check_notification_health()

    all_checks = [database_health, notification_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "notifications": notification_health,
        }
    }
    return response, http_status


@system_bp.get("/api/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "0.1.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }


@system_bp.get("/api/products/low-stock")
@require_tenant
def low_stock_products():
    """Products of the caller's branch at or below their stock threshold."""
    try:
        products = inventory_service.list_low_stock_products(g.tenant)
        return jsonify({"products": [p.to_dict() for p in products], "count": len(products)}), 200
    except Exception:
        current_app.logger.exception("Failed to list low stock products")
        return jsonify({"error": "Internal server error"}), 500
