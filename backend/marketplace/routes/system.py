# backend/marketplace/routes/system.py
"""
System health endpoint.

Reports database connectivity plus whether the outbound collaborators
(mail transport, object storage, auth service) are configured.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Order, Product
from marketplace.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        order_count = db.session.query(Order).count()
        pending_emails = db.session.query(Order).filter(Order.email_sent.is_(False)).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "orders": order_count,
                "orders_awaiting_email": pending_emails,
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


def check_integrations() -> dict:
    """Configuration-only check; no outbound calls are made."""
    mailer = current_app.extensions["mailer"]
    storage = current_app.extensions["storage"]
    auth_client = current_app.extensions["auth_client"]

    details = {
        "mail_configured": bool(mailer.configured),
        "storage_configured": bool(storage.configured),
        "auth_configured": bool(auth_client.base_url),
    }
    missing = [name.replace("_configured", "") for name, ok in details.items() if not ok]
    if missing:
        return {
            "status": "degraded",
            "warning": f"Not configured: {', '.join(missing)}",
            "details": details,
        }
    return {"status": "healthy", "details": details}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: database reachable (integrations may be degraded)
    - 503: database unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    integrations = check_integrations()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif integrations["status"] == "degraded":
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "integrations": integrations,
        }
    }

    return response, http_status
