# backend/storefront/routes/system.py
"""
System health endpoint.

Checks the document store and reports whether the outbound integrations
are configured.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Document
from ..responses import envelope
from storefront.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Count documents per container; any failure marks the store unhealthy."""
    start_time = time.time()
    try:
        rows = (
            db.session.query(Document.container, func.count(Document.id))
            .group_by(Document.container)
            .all()
        )
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {container: count for container, count in rows},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_integrations() -> dict:
    cfg = current_app.config
    configured = {
        "payment_gateway": bool(cfg.get("PAYMENT_CLIENT_ID") and cfg.get("PAYMENT_CLIENT_SECRET")),
        "webhook_auth": bool(cfg.get("WEBHOOK_USER") and cfg.get("WEBHOOK_PASS")),
        "sms": bool(cfg.get("SMS_URL")),
        "maps": bool(cfg.get("MAPS_API_KEY")),
    }
    status = "healthy" if configured["payment_gateway"] and configured["webhook_auth"] else "degraded"
    return {"status": status, "details": configured}


@system_bp.get("/api/health")
def health():
    """
    200 when the document store answers (integrations may be degraded),
    503 when it does not.
    """
    database_health = check_database_health()
    integrations = check_integrations()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif integrations["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    data = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health, "integrations": integrations},
    }
    return envelope(http_status == 200, overall_status, data, status=http_status)
