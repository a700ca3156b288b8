# backend/pharmaflow/routes/system.py
"""
System health endpoint.

Checks the database and the workflow reference data so deployments can
tell an empty or half-seeded database from a healthy one.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Permission, SessionToken, User, WorkflowStage, WorkflowTransition
from pharmaflow.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count, "active_sessions": active_sessions},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_workflow_health() -> dict:
    """Stages, rules and the permission catalog must be seeded; missing ones degrade."""
    start_time = time.time()
    try:
        permission_count = db.session.query(Permission).count()
        stage_count = db.session.query(WorkflowStage).filter(WorkflowStage.is_active.is_(True)).count()
        transition_count = db.session.query(WorkflowTransition).count()
        initial_codes = set((current_app.config.get("WORKFLOW_INITIAL_STAGES") or {}).values())
        present = {
            code for (code,) in db.session.query(WorkflowStage.code).filter(
                WorkflowStage.code.in_(initial_codes), WorkflowStage.is_active.is_(True)
            ).all()
        } if initial_codes else set()
        missing_initial = sorted(initial_codes - present)
        elapsed_ms = (time.time() - start_time) * 1000

        details = {
            "permissions": permission_count,
            "active_stages": stage_count,
            "transitions": transition_count,
        }
        if permission_count == 0 or missing_initial:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"Missing initial stages: {', '.join(missing_initial)}" if missing_initial
                else "Permission catalog not initialized",
                "details": details,
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Workflow health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Workflow registry error",
        }


@system_bp.get("/health")
def health():
    """
    Health check.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()
    database_health = check_database_health()
    workflow_health = check_workflow_health()

    all_checks = [database_health, workflow_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "workflow": workflow_health,
        },
    }, http_status
