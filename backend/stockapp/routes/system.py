# backend/stockapp/routes/system.py
"""
System health endpoint.

Checks the application database and the document store backing the
inventory collections.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..store import StoreError, get_store
from ..time_utils import now_iso

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_document_store_health() -> dict:
    """Report the backend in use and the composite indexes it has."""
    start_time = time.time()
    store = get_store()
    try:
        indexes = store.list_indexes()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "backend": type(store).__name__,
                "indexes": [f"{collection}({', '.join(fields)})" for collection, fields in indexes],
            },
        }
    except StoreError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Document store health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Document store error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: all checks healthy
    - 503: one or more checks unhealthy
    """
    checks = {
        "database": check_database_health(),
        "document_store": check_document_store_health(),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": now_iso(),
        "checks": checks,
    }
    return response, 200 if healthy else 503
