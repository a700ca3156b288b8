# Overview: Closed vocabularies for workflow actions and permission actions.

from __future__ import annotations

from flask import current_app, has_app_context


# Actions that move an entity between stages. Deployments may add more via
# WORKFLOW_EXTRA_ACTIONS (e.g. "send", "warehouse_check").
CORE_WORKFLOW_ACTIONS = (
    "edit",
    "submit",
    "approve",
    "reject",
    "return",
    "cancel",
    "receive",
    "qc_check",
    "complete",
)

# Capability verbs a Permission may carry. Workflow actions are included so a
# permission can be scoped to exactly one stage action.
PERMISSION_ACTIONS = (
    "view",
    "create",
    "update",
    "delete",
    "submit",
    "approve",
    "statistics",
    "adjust",
    "reserve",
    "transfer",
    "utilize",
    "movement_history",
    "edit",
    "reject",
    "return",
    "cancel",
    "receive",
    "qc_check",
    "complete",
)


def workflow_actions() -> frozenset[str]:
    """Core actions plus any configured for this deployment."""
    extra: list[str] = []
    if has_app_context():
        extra = current_app.config.get("WORKFLOW_EXTRA_ACTIONS") or []
    return frozenset(CORE_WORKFLOW_ACTIONS) | frozenset(a.strip().lower() for a in extra if a.strip())
