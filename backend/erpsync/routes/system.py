# backend/erpsync/routes/system.py
"""
System health endpoint.

Checks the database and the sync bookkeeping tables (locks, cache) so a
stuck lock or an unreachable database shows up in monitoring.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import CatalogItem, DiscountCode, SyncLock
from erpsync.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        item_count = db.session.query(CatalogItem).count()
        code_count = db.session.query(DiscountCode).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "catalog_items": item_count,
                "discount_codes": code_count,
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


def check_lock_health() -> dict:
    """
    Expired lock rows are harmless (the next acquirer replaces them) but
    reported as degraded so they get purged.
    """
    start_time = time.time()
    try:
        now = utcnow()
        held = db.session.query(SyncLock).filter(SyncLock.expires_at > now).count()
        expired = db.session.query(SyncLock).filter(SyncLock.expires_at <= now).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "degraded" if expired else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "held": held,
                "expired_pending_cleanup": expired,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Lock health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Lock table error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database or lock table unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    lock_health = check_lock_health()

    all_checks = [database_health, lock_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
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
            "locks": lock_health,
        }
    }

    return response, http_status
