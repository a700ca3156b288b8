from __future__ import annotations

from ..extensions import db
from pharmaflow.time_utils import to_utc_z, utcnow, normalize_utc


# Permissions a user must hold (via a stage grant) to act on entities parked in a stage.
stage_required_permissions = db.Table(
    "workflow_stage_required_permissions",
    db.Column("stage_id", db.Integer, db.ForeignKey("workflow_stages.id"), primary_key=True),
    db.Column("permission_id", db.Integer, db.ForeignKey("permissions.id"), primary_key=True),
)

# Candidate successor stages (directed adjacency, used for display and delete guards).
stage_next_stages = db.Table(
    "workflow_stage_next_stages",
    db.Column("stage_id", db.Integer, db.ForeignKey("workflow_stages.id"), primary_key=True),
    db.Column("next_stage_id", db.Integer, db.ForeignKey("workflow_stages.id"), primary_key=True),
)

# Permissions handed to one user for one stage.
stage_permission_grants = db.Table(
    "stage_permission_grants",
    db.Column("stage_permission_id", db.Integer, db.ForeignKey("stage_permissions.id"), primary_key=True),
    db.Column("permission_id", db.Integer, db.ForeignKey("permissions.id"), primary_key=True),
)


def _permission_ref(permission) -> dict:
    return {
        "id": permission.id,
        "name": permission.name,
        "resource": permission.resource,
        "action": permission.action,
    }


def _user_ref(user) -> dict | None:
    if user is None:
        return None
    return {"id": user.id, "username": user.username, "full_name": user.full_name}


class WorkflowStage(db.Model):
    """
    A named node in the workflow graph.

    Entities point at a stage through current_stage_id. A stage is never
    hard-deleted while anything references it; use is_active to retire it.

    sequence is ordering metadata only (duplicates are tolerated, reorder
    rejects collisions among the stages it touches).
    """
    __tablename__ = "workflow_stages"
    __table_args__ = (
        db.Index("ix_workflow_stages_sequence", "sequence"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    code = db.Column(db.String(50), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    sequence = db.Column(db.Integer, nullable=False)

    # Action tags valid while an entity sits here (JSON list of strings)
    allowed_actions = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    required_permissions = db.relationship(
        "Permission",
        secondary=stage_required_permissions,
        lazy="selectin",
        order_by="Permission.name",
    )
    next_stages = db.relationship(
        "WorkflowStage",
        secondary=stage_next_stages,
        primaryjoin=(stage_next_stages.c.stage_id == id),
        secondaryjoin=(stage_next_stages.c.next_stage_id == id),
        lazy="selectin",
        order_by="WorkflowStage.sequence",
    )
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    updated_by = db.relationship("User", foreign_keys=[updated_by_user_id])

    @property
    def is_terminal(self) -> bool:
        return not self.next_stages

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "sequence": self.sequence,
            "allowed_actions": list(self.allowed_actions or []),
            "required_permissions": [_permission_ref(p) for p in self.required_permissions],
            "next_stages": [{"id": s.id, "code": s.code, "name": s.name} for s in self.next_stages],
            "is_active": self.is_active,
            "is_terminal": self.is_terminal,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WorkflowTransition(db.Model):
    """
    Directed, action-labelled edge between two stages.

    conditions holds a tagged predicate (see services.workflow_conditions),
    never executable code. auto_transition edges fire without a user action
    as soon as an entity enters from_stage.
    """
    __tablename__ = "workflow_transitions"
    __table_args__ = (
        db.Index("ix_workflow_transitions_from_action", "from_stage_id", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=False, index=True)
    to_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False)

    conditions = db.Column(db.JSON, nullable=True)
    auto_transition = db.Column(db.Boolean, nullable=False, default=False)
    required_fields = db.Column(db.JSON, nullable=False, default=list)
    notification_template = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    from_stage = db.relationship("WorkflowStage", foreign_keys=[from_stage_id], lazy="joined")
    to_stage = db.relationship("WorkflowStage", foreign_keys=[to_stage_id], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_stage": {"id": self.from_stage.id, "code": self.from_stage.code, "name": self.from_stage.name},
            "to_stage": {"id": self.to_stage.id, "code": self.to_stage.code, "name": self.to_stage.name},
            "action": self.action,
            "conditions": self.conditions,
            "auto_transition": self.auto_transition,
            "required_fields": list(self.required_fields or []),
            "notification_template": self.notification_template,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StagePermission(db.Model):
    """
    Per-user, per-stage authorization grant.

    WHY: Who may act on an entity depends on where the entity sits. A grant
    hands a user a subset of catalog permissions for one stage, optionally
    until expiry_date.

    At most one row per (user, stage); assignments upsert into it and
    revocations deactivate it rather than delete it.
    """
    __tablename__ = "stage_permissions"
    __table_args__ = (
        db.UniqueConstraint("user_id", "stage_id", name="uq_stage_permissions_user_stage"),
        db.Index("ix_stage_permissions_stage_active", "stage_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=False, index=True)

    # Null means the grant never expires
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)
    assigned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    remarks = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    permissions = db.relationship(
        "Permission",
        secondary=stage_permission_grants,
        lazy="selectin",
        order_by="Permission.name",
    )
    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("stage_permissions", lazy=True))
    stage = db.relationship("WorkflowStage", backref=db.backref("assignments", lazy=True))
    assigned_by = db.relationship("User", foreign_keys=[assigned_by_user_id])

    @property
    def is_expired(self) -> bool:
        if self.expiry_date is None:
            return False
        return utcnow() > normalize_utc(self.expiry_date)

    @property
    def is_valid(self) -> bool:
        return bool(self.is_active) and not self.is_expired

    @property
    def permission_names(self) -> set[str]:
        return {p.name for p in self.permissions}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user": _user_ref(self.user),
            "stage": {"id": self.stage.id, "code": self.stage.code, "name": self.stage.name},
            "permissions": [_permission_ref(p) for p in self.permissions],
            "expiry_date": to_utc_z(self.expiry_date) if self.expiry_date else None,
            "assigned_by": _user_ref(self.assigned_by),
            "is_active": self.is_active,
            "is_expired": self.is_expired,
            "is_valid": self.is_valid,
            "remarks": self.remarks,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WorkflowHistoryEntry(db.Model):
    """
    Append-only stage transition log, shared by every workflow entity type.

    APPEND-ONLY: rows are never updated or deleted. sequence is 1-based per
    (entity_type, entity_id) and the unique constraint rejects a second
    writer racing for the same slot.
    """
    __tablename__ = "workflow_history"
    __table_args__ = (
        db.UniqueConstraint("entity_type", "entity_id", "sequence", name="uq_workflow_history_entity_seq"),
        db.Index("ix_workflow_history_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    sequence = db.Column(db.Integer, nullable=False)

    from_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=True)
    stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=False, index=True)
    transition_id = db.Column(
        db.Integer, db.ForeignKey("workflow_transitions.id", ondelete="SET NULL"), nullable=True
    )
    action = db.Column(db.String(32), nullable=False)
    action_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    action_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    remarks = db.Column(db.Text, nullable=True)
    # [{"field": ..., "old": ..., "new": ...}]
    changes = db.Column(db.JSON, nullable=False, default=list)
    is_auto = db.Column(db.Boolean, nullable=False, default=False)

    stage = db.relationship("WorkflowStage", foreign_keys=[stage_id], lazy="joined")
    from_stage = db.relationship("WorkflowStage", foreign_keys=[from_stage_id], lazy="joined")
    action_by = db.relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "sequence": self.sequence,
            "from_stage": {"id": self.from_stage.id, "code": self.from_stage.code} if self.from_stage else None,
            "stage": {"id": self.stage.id, "code": self.stage.code, "name": self.stage.name},
            "transition_id": self.transition_id,
            "action": self.action,
            "action_by": _user_ref(self.action_by),
            "action_date": to_utc_z(self.action_date),
            "remarks": self.remarks,
            "changes": list(self.changes or []),
            "is_auto": self.is_auto,
        }
