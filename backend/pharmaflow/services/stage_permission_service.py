# Overview: Stage assignment store (per-user, per-stage permission grants).

"""
Stage Permission Grants

WHY: Who may act on an entity depends on the stage it sits in. A grant
gives one user a subset of catalog permissions for one stage, optionally
until an expiry date.

RULES:
- One record per (user, stage). assign() upserts into it.
- expiry_date must not be in the past when written.
- revoke() deactivates instead of deleting. Removing the last permission
  of a grant also deactivates it.
- A grant counts only while active and unexpired.
- A stage's required permission whose action is a workflow action tag
  (approve, reject, ...) is required only for that action; any other
  required permission (view, update, ...) is required for every action.
- Every action needs a valid grant on the stage. On a stage with no
  required permissions an empty grant is enough.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Permission, StagePermission, User, WorkflowStage
from ..validation import (
    DomainError,
    NotFoundError,
    StorageError,
    ValidationError,
    Violations,
    check_length,
    clean_string,
    coerce_datetime,
    coerce_id_list,
    coerce_int,
)
from ..workflow_actions import workflow_actions
from .audit_service import record_permission_change
from .concurrency import upsert_with_retry
from pharmaflow.time_utils import utcnow, to_utc_z


REMARKS_MAX = 500


@dataclass
class AssignmentOutcome:
    """Per-item result of bulk_assign."""
    index: int
    assignment: StagePermission | None = None
    error: DomainError | None = None
    request: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.ok:
            return {"index": self.index, "status": "success", "assignment": self.assignment.to_dict()}
        return {"index": self.index, "status": "error", "error": self.error.to_dict()}


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
    return user


def _get_stage(stage_id: int) -> WorkflowStage:
    stage = db.session.get(WorkflowStage, stage_id)
    if not stage:
        raise NotFoundError(f"Workflow stage {stage_id} not found", details={"stage_id": stage_id})
    return stage


def _clean_assignment(item: dict) -> tuple[dict, User, WorkflowStage, list[Permission]]:
    """
    Validate one assignment request.

    Unknown user, stage or permission ids are reported as field violations
    alongside any format problems.
    """
    if not isinstance(item, dict):
        raise ValidationError([{"field": "assignment", "message": "must be an object"}])

    v = Violations()
    user_id = coerce_int(v, "user_id", item.get("user_id"), minimum=1)
    stage_id = coerce_int(v, "stage_id", item.get("stage_id"), minimum=1)
    permission_ids = coerce_id_list(v, "permissions", item.get("permissions"))
    expiry_date = coerce_datetime(v, "expiry_date", item.get("expiry_date"))
    remarks = clean_string(item.get("remarks")) or None
    check_length(v, "remarks", remarks, max_len=REMARKS_MAX, required=False)

    if expiry_date is not None and expiry_date < utcnow():
        v.add("expiry_date", "cannot be in the past")

    user = db.session.get(User, user_id) if user_id else None
    if user_id and user is None:
        v.add("user_id", f"user {user_id} does not exist")
    stage = db.session.get(WorkflowStage, stage_id) if stage_id else None
    if stage_id and stage is None:
        v.add("stage_id", f"stage {stage_id} does not exist")

    permissions: list[Permission] = []
    if permission_ids:
        found = {p.id: p for p in db.session.query(Permission).filter(Permission.id.in_(permission_ids)).all()}
        for idx, pid in enumerate(permission_ids):
            if pid not in found:
                v.add(f"permissions[{idx}]", f"permission {pid} does not exist")
        permissions = [found[pid] for pid in dict.fromkeys(permission_ids) if pid in found]

    v.raise_if_any()
    cleaned = {"expiry_date": expiry_date, "remarks": remarks}
    return cleaned, user, stage, permissions


def assign(payload: dict, *, assigned_by: User) -> StagePermission:
    """
    Upsert the grant for (user_id, stage_id).

    payload keys: user_id, stage_id, permissions (ids, may be empty),
    expiry_date? (ISO-8601, null = never expires), remarks?

    An empty permission list is legal. Re-assigning reactivates the grant
    and replaces its permissions, expiry and remarks.

    Raises ValidationError for malformed input, unknown ids or a past expiry.
    """
    cleaned, user, stage, permissions = _clean_assignment(payload)
    user_id, username = user.id, user.username
    stage_id, stage_code = stage.id, stage.code
    assigned_by_id, assigned_by_name = assigned_by.id, assigned_by.username

    def _op() -> StagePermission:
        assignment = db.session.query(StagePermission).filter_by(user_id=user_id, stage_id=stage_id).first()
        before = _snapshot(assignment)
        with db.session.no_autoflush:
            if assignment is None:
                assignment = StagePermission(user_id=user_id, stage_id=stage_id,
                                             assigned_by_user_id=assigned_by_id)
                db.session.add(assignment)

            assignment.permissions = list(permissions)
            assignment.expiry_date = cleaned["expiry_date"]
            assignment.remarks = cleaned["remarks"]
            assignment.assigned_by_user_id = assigned_by_id
            assignment.is_active = True
            assignment.updated_at = utcnow()

            record_permission_change(
                user_id=user_id,
                stage_code=stage_code,
                performed_by=assigned_by,
                description=f"Stage permissions assigned to {username} on {stage_code}",
                changes=_diff(before, _snapshot(assignment)),
            )
        db.session.commit()
        return assignment

    assignment = upsert_with_retry(_op)
    current_app.logger.info(
        "Stage grant %s/%s set to %s by %s",
        username, stage_code, sorted(assignment.permission_names), assigned_by_name,
    )
    return assignment


def revoke(user_id: int, stage_id: int, permission_ids: list[int] | None = None, *,
           revoked_by: User) -> StagePermission | None:
    """
    Revoke a grant, or part of it.

    Without permission_ids the whole grant is deactivated. With a subset,
    only those permissions are removed; a grant left empty is deactivated.
    Returns None when the pair has no grant record.
    """
    v = Violations()
    user_id = coerce_int(v, "user_id", user_id, minimum=1)
    stage_id = coerce_int(v, "stage_id", stage_id, minimum=1)
    permission_ids = coerce_id_list(v, "permissions", permission_ids)
    v.raise_if_any()

    assignment = db.session.query(StagePermission).filter_by(user_id=user_id, stage_id=stage_id).first()
    if assignment is None:
        return None

    before = _snapshot(assignment)
    if permission_ids:
        drop = set(permission_ids)
        assignment.permissions = [p for p in assignment.permissions if p.id not in drop]
        if not assignment.permissions:
            assignment.is_active = False
    else:
        assignment.is_active = False
    assignment.updated_at = utcnow()

    record_permission_change(
        user_id=assignment.user_id,
        stage_code=assignment.stage.code,
        performed_by=revoked_by,
        description=f"Stage permissions revoked from {assignment.user.username} on {assignment.stage.code}",
        changes=_diff(before, _snapshot(assignment)),
    )
    db.session.commit()
    return assignment


def bulk_assign(items: list[dict], *, assigned_by: User) -> list[AssignmentOutcome]:
    """
    Apply many assignments independently.

    Each item commits or fails on its own; a failure never rolls back the
    items before it. Returns one outcome per item, in input order.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError([{"field": "assignments", "message": "must be a non-empty array"}])

    outcomes: list[AssignmentOutcome] = []
    for index, item in enumerate(items):
        try:
            assignment = assign(item, assigned_by=assigned_by)
            outcomes.append(AssignmentOutcome(index=index, assignment=assignment, request=item))
        except DomainError as exc:
            db.session.rollback()
            outcomes.append(AssignmentOutcome(index=index, error=exc, request=item if isinstance(item, dict) else {}))
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Bulk stage assignment item %d could not be saved", index)
            error = StorageError("Stage permission could not be saved", details={"index": index})
            outcomes.append(AssignmentOutcome(index=index, error=error, request=item if isinstance(item, dict) else {}))

    failed = sum(1 for o in outcomes if not o.ok)
    if failed:
        current_app.logger.warning("Bulk stage assignment: %d of %d items failed", failed, len(outcomes))
    return outcomes


def get_active_permissions(user_id: int, stage_id: int) -> StagePermission | None:
    """
    Return the grant only while it is active and unexpired, else None.

    Raises NotFoundError for unknown user or stage ids.
    """
    _get_user(user_id)
    _get_stage(stage_id)
    assignment = db.session.query(StagePermission).filter_by(user_id=user_id, stage_id=stage_id).first()
    if assignment is None or not assignment.is_valid:
        return None
    return assignment


def required_permissions_for_action(stage: WorkflowStage, action: str) -> list[Permission]:
    """Required permissions of stage that apply to action."""
    scoped = workflow_actions()
    return [
        p for p in stage.required_permissions
        if p.action not in scoped or p.action == action
    ]


def missing_permissions(user_id: int, stage: WorkflowStage, action: str) -> list[str] | None:
    """
    Names of required permissions the user lacks for action on stage.

    Returns None when the user has no valid grant on the stage, [] when the
    grant covers the action. A stage with no required permissions is covered
    by any valid grant, even an empty one.
    """
    assignment = db.session.query(StagePermission).filter_by(user_id=user_id, stage_id=stage.id).first()
    if assignment is None or not assignment.is_valid:
        return None
    granted = assignment.permission_names
    return [p.name for p in required_permissions_for_action(stage, action) if p.name not in granted]


def can_perform_action(user_id: int, stage_id: int, action: str) -> bool:
    """
    True when the user may perform action on entities in stage.

    False (never an exception) when: the user is inactive, the stage is
    inactive, action is not allowed in the stage, or the user's valid grant
    does not cover the applicable required permissions.

    Raises NotFoundError for unknown user or stage ids.
    """
    user = _get_user(user_id)
    stage = _get_stage(stage_id)

    if not user.is_active or not stage.is_active:
        return False
    if action not in (stage.allowed_actions or []):
        return False
    return missing_permissions(user.id, stage, action) == []


def get_user_stage_permission(user_id: int, stage_id: int) -> StagePermission | None:
    """Active grant record for the pair (expired grants included, flagged by is_expired)."""
    _get_user(user_id)
    _get_stage(stage_id)
    return db.session.query(StagePermission).filter_by(
        user_id=user_id, stage_id=stage_id, is_active=True
    ).first()


def list_stage_users(stage_id: int, *, include_inactive: bool = False) -> list[StagePermission]:
    _get_stage(stage_id)
    query = db.session.query(StagePermission).filter(StagePermission.stage_id == stage_id)
    if not include_inactive:
        query = query.filter(StagePermission.is_active.is_(True))
    return query.order_by(StagePermission.created_at.desc(), StagePermission.id.desc()).all()


def list_user_assignments(user_id: int) -> list[StagePermission]:
    _get_user(user_id)
    return (
        db.session.query(StagePermission)
        .filter(StagePermission.user_id == user_id)
        .order_by(StagePermission.stage_id)
        .all()
    )


def users_with_valid_grant(stage_id: int) -> list[int]:
    """User ids holding an active, unexpired grant on stage."""
    assignments = db.session.query(StagePermission).filter(
        StagePermission.stage_id == stage_id,
        StagePermission.is_active.is_(True),
    ).all()
    return [a.user_id for a in assignments if a.is_valid]


def deactivate_expired() -> int:
    """Flip expired grants to inactive. Returns how many were changed."""
    now = utcnow()
    expired = db.session.query(StagePermission).filter(
        StagePermission.is_active.is_(True),
        StagePermission.expiry_date.isnot(None),
        StagePermission.expiry_date < now,
    ).all()
    for assignment in expired:
        assignment.is_active = False
        assignment.updated_at = now
    db.session.commit()
    if expired:
        current_app.logger.info("Deactivated %d expired stage grants", len(expired))
    return len(expired)


def _snapshot(assignment: StagePermission | None) -> dict:
    if assignment is None:
        return {}
    return {
        "permissions": sorted(assignment.permission_names),
        "expiry_date": to_utc_z(assignment.expiry_date) if assignment.expiry_date else None,
        "is_active": assignment.is_active,
        "remarks": assignment.remarks,
    }


def _diff(before: dict, after: dict) -> list[dict]:
    changes = []
    for key in sorted(set(before) | set(after)):
        old, new = before.get(key), after.get(key)
        if old != new:
            changes.append({"field": key, "old": old, "new": new})
    return changes
