# backend/hive/routes/system.py
"""
System health endpoint.

Reports database reachability plus the state of the payment pipeline, so
stuck pending transactions are visible without shell access.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Order, Transaction
from ..statuses import TransactionStatus
from hive.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        pending_count = db.session.query(Transaction).filter_by(
            status=TransactionStatus.PENDING.value
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "orders": order_count,
                "pending_transactions": pending_count,
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


def check_configuration() -> dict:
    """Missing gateway or mail keys degrade the service without taking it down."""
    missing = [
        key for key in ("PAYSTACK_SECRET_KEY", "SENDGRID_API_KEY")
        if not current_app.config.get(key)
    ]
    if missing:
        return {"status": "degraded", "warning": f"Not configured: {', '.join(missing)}"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    config_health = check_configuration()

    all_checks = [database_health, config_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "configuration": config_health,
        }
    }, http_status
