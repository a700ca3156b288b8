from __future__ import annotations

from ..extensions import db
from pharmaflow.time_utils import to_utc_z, utcnow


class AuditLog(db.Model):
    """
    Business audit trail (workflow transitions, permission changes).

    IMMUTABLE: Append-only. Distinct from security_events, which records
    access decisions rather than state changes.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_action_created", "action", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # workflow_transitioned, permission_changed
    action = db.Column(db.String(64), nullable=False)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    entity_number = db.Column(db.String(64), nullable=True)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    performed_by_name = db.Column(db.String(128), nullable=True)

    description = db.Column(db.Text, nullable=False)
    # create, update, delete, approve, reject, assign, system
    category = db.Column(db.String(16), nullable=False)
    severity = db.Column(db.String(16), nullable=False, default="medium")

    # [{"field": ..., "old": ..., "new": ...}]
    changes = db.Column(db.JSON, nullable=False, default=list)
    # workflow action, stage codes, is_auto, ...
    context = db.Column(db.JSON, nullable=False, default=dict)
    is_system_generated = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    performed_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_number": self.entity_number,
            "performed_by_user_id": self.performed_by_user_id,
            "performed_by_name": self.performed_by_name,
            "description": self.description,
            "category": self.category,
            "severity": self.severity,
            "changes": list(self.changes or []),
            "context": dict(self.context or {}),
            "is_system_generated": self.is_system_generated,
            "created_at": to_utc_z(self.created_at),
        }


class Notification(db.Model):
    """In-app notification for one recipient."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_recipient_status", "recipient_user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    template = db.Column(db.String(64), nullable=False)
    # approval_required, workflow_completed, qc_assignment, ...
    type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(16), nullable=False, default="medium")
    # unread, read, archived
    status = db.Column(db.String(16), nullable=False, default="unread")

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    recipient = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient_user_id": self.recipient_user_id,
            "template": self.template,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "status": self.status,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
            "read_at": to_utc_z(self.read_at) if self.read_at else None,
        }
