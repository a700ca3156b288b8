# Overview: Business audit trail and the audit sink used by the workflow engine.

from __future__ import annotations

from typing import Protocol

from ..extensions import db
from ..models import AuditLog, User
from pharmaflow.time_utils import utcnow


# Audit category per workflow action
ACTION_CATEGORIES = {
    "approve": "approve",
    "complete": "approve",
    "reject": "reject",
    "return": "reject",
    "cancel": "delete",
    "edit": "update",
    "submit": "update",
    "receive": "update",
    "qc_check": "update",
}


def category_for_action(action: str) -> str:
    return ACTION_CATEGORIES.get(action, "update")


class AuditSink(Protocol):
    """Receives one call per committed workflow transition."""

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: int,
        acting_user: User | None,
        changes: list[dict],
        *,
        context: dict | None = None,
    ) -> None:
        ...


def _new_entry(
    *,
    action: str,
    entity_type: str,
    entity_id: int,
    performed_by: User | None,
    description: str,
    category: str,
    changes: list[dict] | None = None,
    context: dict | None = None,
    entity_number: str | None = None,
    is_system_generated: bool = False,
) -> AuditLog:
    entry = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_number=entity_number,
        performed_by_user_id=performed_by.id if performed_by else None,
        performed_by_name=performed_by.display_name if performed_by else None,
        description=description,
        category=category,
        changes=list(changes or []),
        context=dict(context or {}),
        is_system_generated=is_system_generated,
        created_at=utcnow(),
    )
    db.session.add(entry)
    return entry


class DatabaseAuditSink:
    """
    Writes workflow_transitioned rows to audit_logs.

    Runs after the transition committed, in its own short transaction, so a
    failure here never touches the entity.
    """

    def record(self, action, entity_type, entity_id, acting_user, changes, *, context=None) -> None:
        context = dict(context or {})
        from_code = context.get("from_stage")
        to_code = context.get("to_stage")
        try:
            _new_entry(
                action="workflow_transitioned",
                entity_type=entity_type,
                entity_id=entity_id,
                entity_number=context.get("entity_number"),
                performed_by=acting_user,
                description=f"{action} moved {entity_type} {entity_id} from {from_code} to {to_code}",
                category=category_for_action(action),
                changes=changes,
                context={"workflow_action": action, **context},
                is_system_generated=bool(context.get("is_auto")),
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


def record_permission_change(
    *,
    user_id: int,
    stage_code: str,
    performed_by: User | None,
    description: str,
    changes: list[dict],
) -> AuditLog:
    """
    Stage a permission_changed row in the caller's transaction.

    The caller commits, so the audit row and the grant change land together.
    """
    return _new_entry(
        action="permission_changed",
        entity_type="user",
        entity_id=user_id,
        performed_by=performed_by,
        description=description,
        category="assign",
        changes=changes,
        context={"stage": stage_code},
    )

