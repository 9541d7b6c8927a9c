# backend/vitrina/routes/system.py
"""
System health endpoint.

Checks the database and the branch setup the POS depends on
(every active branch must resolve its FRONT and RESERVE locations).
"""

import time

from flask import Blueprint, current_app

from ..errors import ConfigurationError
from ..extensions import db
from ..models import Branch, CashSession, User
from ..services.location_service import clock_for_branch, resolve_locations
from vitrina.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        user_count = db.session.query(User).count()
        open_sessions = db.session.query(CashSession).filter(CashSession.closed_at.is_(None)).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "branches": branch_count,
                "users": user_count,
                "open_cash_sessions": open_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_branch_setup() -> dict:
    """Degraded (not unhealthy) when a branch is misconfigured; other branches still sell."""
    problems = []
    try:
        for branch in db.session.query(Branch).filter_by(is_active=True).order_by(Branch.id).all():
            try:
                clock_for_branch(branch)
                resolve_locations(branch.id)
            except ConfigurationError as e:
                problems.append({"branch_id": branch.id, "code": branch.code, "error": e.message})
    except Exception:
        current_app.logger.exception("Branch setup check failed")
        return {"status": "unhealthy", "error": "Branch setup check error"}

    if problems:
        return {"status": "degraded", "problems": problems}
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
    branch_health = (
        check_branch_setup()
        if database_health["status"] == "healthy"
        else {"status": "unknown"}
    )

    if database_health["status"] == "unhealthy" or branch_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif branch_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "branches": branch_health,
        },
    }
    return response, http_status
