# backend/branchstock/routes/system.py
"""
System health endpoint.

Reports database connectivity and the state of the ranking refresher so a
stale dashboard can be told apart from a broken one.
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db, ranking_refresher
from ..models import LedgerEntry, StockAccount
from ..time_utils import to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        account_count = db.session.query(StockAccount).count()
        ledger_count = db.session.query(LedgerEntry).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stock_accounts": account_count,
                "ledger_entries": ledger_count,
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


def check_ranking_health() -> dict:
    last_error = ranking_refresher.last_error
    return {
        "status": "degraded" if last_error is not None else "healthy",
        "last_refreshed_at": to_utc_z(ranking_refresher.last_refreshed_at),
        "last_error": str(last_error) if last_error is not None else None,
    }


@system_bp.get("/health")
def health_route():
    database = check_database_health()
    rankings = check_ranking_health()
    status = "healthy" if database["status"] == "healthy" else "unhealthy"
    if status == "healthy" and rankings["status"] != "healthy":
        status = "degraded"
    code = 503 if status == "unhealthy" else 200
    return jsonify({"status": status, "checks": {"database": database, "rankings": rankings}}), code
