# backend/kasir/routes/system.py
"""
System health and version endpoints.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import KvEntry
from ..core import current_core
from kasir.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check the local store table answers a count query."""
    start_time = time.time()
    try:
        key_count = db.session.query(KvEntry).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"keys": key_count},
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_sync_health() -> dict:
    """
    Sync is never unhealthy for the device: offline operation is normal.
    A backlog or dead letters degrade the status so they get noticed.
    """
    sync = current_core().sync
    pending = len(sync.pending())
    dead = len(sync.dead_letters())
    return {
        "status": "degraded" if dead else "healthy",
        "online": sync.probe.is_online(),
        "pending": pending,
        "dead_letters": dead,
        "last_sync": to_utc_z(sync.last_sync_time()),
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: the local database is unusable
    """
    start_time = time.time()

    database_health = check_database_health()
    checks = {"database": database_health}
    if database_health["status"] != "unhealthy":
        checks["sync"] = check_sync_health()

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    import sys

    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
