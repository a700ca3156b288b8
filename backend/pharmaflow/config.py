# backend/pharmaflow/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _list_env(name: str) -> list[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pharmaflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///pharmaflow.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Workflow engine
    # Upper bound on chained auto-transitions after one manual action.
    WORKFLOW_MAX_AUTO_TRANSITIONS = _int_env("WORKFLOW_MAX_AUTO_TRANSITIONS", 10)
    # Time limit for a single transition request (also used as the DB lock wait).
    WORKFLOW_REQUEST_TIMEOUT_SECONDS = _int_env("WORKFLOW_REQUEST_TIMEOUT_SECONDS", 15)
    # Deployment-specific action tags accepted on stages and transitions.
    WORKFLOW_EXTRA_ACTIONS = _list_env("WORKFLOW_EXTRA_ACTIONS")
    # Stage code every new entity of a type starts in.
    WORKFLOW_INITIAL_STAGES = {
        "purchase_order": os.environ.get("PO_INITIAL_STAGE", "DRAFT"),
        "invoice_receiving": os.environ.get("IR_INITIAL_STAGE", "IR_DRAFT"),
        "quality_control": os.environ.get("QC_INITIAL_STAGE", "QC_INSPECTION"),
        "warehouse_approval": os.environ.get("WH_INITIAL_STAGE", "WH_PENDING"),
    }

    # Notifications: "database" (async thread pool), "log", or "memory"
    NOTIFICATION_BACKEND = os.environ.get("NOTIFICATION_BACKEND", "database")
    NOTIFICATION_MAX_WORKERS = _int_env("NOTIFICATION_MAX_WORKERS", 2)
