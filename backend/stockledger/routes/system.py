# backend/stockledger/routes/system.py
"""
System health endpoint.

Reports database reachability and ledger table sizes for deployment
debugging.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import DailyBalance, MovementEvent, StockTransfer
from ..models.documents import OPEN_TRANSFER_STATUSES
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        movement_count = db.session.query(MovementEvent).count()
        balance_count = db.session.query(DailyBalance).count()
        open_transfers = (
            db.session.query(StockTransfer)
            .filter(StockTransfer.status.in_(OPEN_TRANSFER_STATUSES))
            .count()
        )

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "movement_events": movement_count,
                "daily_balances": balance_count,
                "open_transfers": open_transfers,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: Database healthy
    - 503: Database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()

    if database_health["status"] == "healthy":
        overall_status, http_status = "healthy", 200
    else:
        overall_status, http_status = "unhealthy", 503

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
        }
    }

    return response, http_status
