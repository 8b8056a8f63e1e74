# backend/bakery/routes/system.py
"""
System health and version endpoints.
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..config import StockPolicy
from ..extensions import db
from ..models import Branch, Product, StockLevel, StockMovement
from bakery.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Database connectivity plus row counts of the core tables."""
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        product_count = db.session.query(Product).count()
        level_count = db.session.query(StockLevel).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "branches": branch_count,
                "products": product_count,
                "stock_levels": level_count,
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


def check_ledger_health() -> dict:
    """
    Movement ledger reachability. Negative stock levels mark the check
    degraded: they only exist under supervisor override and need follow-up.
    """
    start_time = time.time()
    try:
        movement_count = db.session.query(func.count(StockMovement.id)).scalar()
        last_movement_at = db.session.query(func.max(StockMovement.created_at)).scalar()
        negative_levels = db.session.query(StockLevel).filter(StockLevel.quantity < 0).count()

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "movements": movement_count,
                "last_movement_at": to_utc_z(last_movement_at),
                "negative_stock_levels": negative_levels,
            }
        }
        if negative_levels:
            result["status"] = "degraded"
            result["warning"] = f"{negative_levels} stock level(s) below zero"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    ledger_health = check_ledger_health()

    all_checks = [database_health, ledger_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    policy = StockPolicy.from_mapping(current_app.config)
    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "ledger": ledger_health,
        },
        "stock_policy": {
            "allow_negative_stock_override": policy.allow_negative_stock_override,
            "inventory_module_enabled": policy.inventory_module_enabled,
        },
    }
    return response, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info (no secrets, credentials or paths)."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": current_app.config.get("API_VERSION", "1.0.0"),
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
