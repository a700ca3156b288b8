# Overview: Stage registry operations (create, edit, delete, reorder, clone).

"""
Workflow Stage Registry

Stages are administrator-maintained reference data. Every write validates
the whole payload and reports all violations at once.

Policies:
- sequence is ordering metadata. Duplicates are tolerated on create/update;
  reorder_stages rejects collisions that involve any stage it moves.
- Stage ids are stable, so renaming a code never orphans next_stages or
  transitions. Codes configured in WORKFLOW_INITIAL_STAGES are pinned.
- A referenced stage is never deleted; deactivate it instead.
"""

from __future__ import annotations

import re

from flask import current_app

from ..extensions import db
from ..models import (
    Permission,
    WorkflowStage,
    WorkflowTransition,
    WorkflowHistoryEntry,
    StagePermission,
    stage_next_stages,
)
from ..validation import (
    ConflictError,
    NotFoundError,
    Violations,
    check_length,
    clean_string,
    coerce_bool,
    coerce_id_list,
    coerce_int,
)
from ..workflow_actions import workflow_actions
from . import entity_adapters


CODE_PATTERN = re.compile(r"^[A-Z_]+$")

NAME_MIN, NAME_MAX = 2, 50
CODE_MIN, CODE_MAX = 2, 20
DESCRIPTION_MAX = 500


def _normalize_code(value) -> str | None:
    code = clean_string(value)
    return code.upper() if code else code


def _validate_actions(v: Violations, value) -> list[str]:
    if not isinstance(value, (list, tuple)) or not value:
        v.add("allowed_actions", "at least one allowed action is required")
        return []
    valid = workflow_actions()
    actions: list[str] = []
    for idx, raw in enumerate(value):
        action = clean_string(raw)
        action = action.lower() if action else action
        if action not in valid:
            v.add(f"allowed_actions[{idx}]", f"invalid action type: {raw!r}")
            continue
        if action not in actions:
            actions.append(action)
    return actions


def _resolve_permissions(v: Violations, ids: list[int]) -> list[Permission]:
    if not ids:
        return []
    found = {p.id: p for p in db.session.query(Permission).filter(Permission.id.in_(ids)).all()}
    for idx, pid in enumerate(ids):
        if pid not in found:
            v.add(f"required_permissions[{idx}]", f"permission {pid} does not exist")
    return [found[pid] for pid in dict.fromkeys(ids) if pid in found]


def _resolve_stages(v: Violations, ids: list[int], *, self_stage: WorkflowStage | None = None) -> list[WorkflowStage]:
    if not ids:
        return []
    found = {s.id: s for s in db.session.query(WorkflowStage).filter(WorkflowStage.id.in_(ids)).all()}
    if self_stage is not None and self_stage.id is not None:
        found.setdefault(self_stage.id, self_stage)
    for idx, sid in enumerate(ids):
        if sid not in found:
            v.add(f"next_stages[{idx}]", f"stage {sid} does not exist")
    return [found[sid] for sid in dict.fromkeys(ids) if sid in found]


def _validate_stage_payload(payload: dict, *, partial: bool, stage: WorkflowStage | None = None) -> dict:
    """
    Validate a stage payload and return the cleaned values.

    With partial=True only the keys present are validated and returned.
    Raises ValidationError listing every violation.
    """
    payload = payload or {}
    v = Violations()
    cleaned: dict = {}

    def present(key: str) -> bool:
        return not partial or key in payload

    if present("name"):
        name = clean_string(payload.get("name"))
        check_length(v, "name", name, min_len=NAME_MIN, max_len=NAME_MAX)
        cleaned["name"] = name

    if present("code"):
        code = _normalize_code(payload.get("code"))
        check_length(v, "code", code, min_len=CODE_MIN, max_len=CODE_MAX)
        if code:
            v.check(bool(CODE_PATTERN.match(code)), "code",
                    "must contain only uppercase letters and underscores")
        cleaned["code"] = code

    if "description" in payload:
        description = clean_string(payload.get("description")) or None
        check_length(v, "description", description, max_len=DESCRIPTION_MAX, required=False)
        cleaned["description"] = description

    if present("sequence"):
        cleaned["sequence"] = coerce_int(v, "sequence", payload.get("sequence"), minimum=1)

    if present("allowed_actions"):
        cleaned["allowed_actions"] = _validate_actions(v, payload.get("allowed_actions"))

    if "required_permissions" in payload:
        ids = coerce_id_list(v, "required_permissions", payload.get("required_permissions"))
        cleaned["required_permissions"] = _resolve_permissions(v, ids)

    if "next_stages" in payload:
        ids = coerce_id_list(v, "next_stages", payload.get("next_stages"))
        cleaned["next_stages"] = _resolve_stages(v, ids, self_stage=stage)

    if "is_active" in payload:
        is_active = coerce_bool(v, "is_active", payload.get("is_active"))
        if is_active is not None:
            cleaned["is_active"] = is_active

    v.raise_if_any()
    return cleaned


def _ensure_code_available(code: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(WorkflowStage.id).filter(WorkflowStage.code == code)
    if exclude_id is not None:
        query = query.filter(WorkflowStage.id != exclude_id)
    if query.first():
        raise ConflictError(f"Stage code {code} already exists", details={"code": code})


def _pinned_codes() -> set[str]:
    return set((current_app.config.get("WORKFLOW_INITIAL_STAGES") or {}).values())


def get_stage(stage_id: int) -> WorkflowStage:
    stage = db.session.get(WorkflowStage, stage_id)
    if not stage:
        raise NotFoundError(f"Workflow stage {stage_id} not found", details={"stage_id": stage_id})
    return stage


def get_stage_by_code(code: str) -> WorkflowStage | None:
    return db.session.query(WorkflowStage).filter_by(code=_normalize_code(code)).first()


def list_stages(*, active_only: bool = False) -> list[WorkflowStage]:
    query = db.session.query(WorkflowStage)
    if active_only:
        query = query.filter(WorkflowStage.is_active.is_(True))
    return query.order_by(WorkflowStage.sequence, WorkflowStage.id).all()


def create_stage(payload: dict, *, created_by_user_id: int | None = None) -> WorkflowStage:
    """
    Create a workflow stage.

    payload keys: name, code, description?, sequence, allowed_actions,
    required_permissions? (permission ids), next_stages? (stage ids), is_active?

    Raises:
        ValidationError: every invalid field
        ConflictError: code already taken
    """
    cleaned = _validate_stage_payload(payload, partial=False)
    _ensure_code_available(cleaned["code"])

    stage = WorkflowStage(
        name=cleaned["name"],
        code=cleaned["code"],
        description=cleaned.get("description"),
        sequence=cleaned["sequence"],
        allowed_actions=cleaned["allowed_actions"],
        is_active=cleaned.get("is_active", True),
        created_by_user_id=created_by_user_id,
        updated_by_user_id=created_by_user_id,
    )
    stage.required_permissions = cleaned.get("required_permissions", [])
    stage.next_stages = cleaned.get("next_stages", [])

    db.session.add(stage)
    db.session.commit()
    current_app.logger.info("Workflow stage %s created (id=%s)", stage.code, stage.id)
    return stage


def update_stage(stage_id: int, payload: dict, *, updated_by_user_id: int | None = None) -> WorkflowStage:
    """
    Update a workflow stage. Only keys present in payload change.

    Raises:
        NotFoundError: unknown stage
        ValidationError: every invalid field
        ConflictError: code taken, or the stage is a configured initial stage
            and its code would change
    """
    stage = get_stage(stage_id)
    cleaned = _validate_stage_payload(payload, partial=True, stage=stage)

    new_code = cleaned.get("code")
    if new_code and new_code != stage.code:
        if stage.code in _pinned_codes():
            raise ConflictError(
                f"Stage {stage.code} is configured as an initial stage; its code cannot change",
                details={"code": stage.code},
            )
        _ensure_code_available(new_code, exclude_id=stage.id)

    for key in ("name", "code", "description", "sequence", "allowed_actions", "is_active"):
        if key in cleaned:
            setattr(stage, key, cleaned[key])
    if "required_permissions" in cleaned:
        stage.required_permissions = cleaned["required_permissions"]
    if "next_stages" in cleaned:
        stage.next_stages = cleaned["next_stages"]
    stage.updated_by_user_id = updated_by_user_id

    db.session.commit()
    return stage


def stage_references(stage_id: int) -> dict[str, int]:
    """Count everything that points at a stage (used by the delete guard)."""
    refs: dict[str, int] = {}

    for entity_type, model in entity_adapters.registered_models().items():
        count = db.session.query(model).filter(model.current_stage_id == stage_id).count()
        if count:
            refs[f"{entity_type}.current_stage"] = count

    transitions = db.session.query(WorkflowTransition).filter(
        db.or_(WorkflowTransition.from_stage_id == stage_id, WorkflowTransition.to_stage_id == stage_id)
    ).count()
    if transitions:
        refs["transitions"] = transitions

    predecessors = db.session.query(stage_next_stages).filter(
        stage_next_stages.c.next_stage_id == stage_id,
        stage_next_stages.c.stage_id != stage_id,
    ).count()
    if predecessors:
        refs["next_stages"] = predecessors

    history = db.session.query(WorkflowHistoryEntry).filter(
        db.or_(WorkflowHistoryEntry.stage_id == stage_id, WorkflowHistoryEntry.from_stage_id == stage_id)
    ).count()
    if history:
        refs["workflow_history"] = history

    return refs


def delete_stage(stage_id: int) -> None:
    """
    Delete an unreferenced stage together with its grants.

    Raises ConflictError listing every kind of live reference.
    """
    stage = get_stage(stage_id)
    refs = stage_references(stage_id)
    if refs:
        raise ConflictError(
            f"Stage {stage.code} is still referenced; deactivate it instead",
            details={"references": refs},
        )

    for assignment in db.session.query(StagePermission).filter_by(stage_id=stage_id).all():
        db.session.delete(assignment)
    stage.next_stages = []
    stage.required_permissions = []
    db.session.delete(stage)
    db.session.commit()
    current_app.logger.info("Workflow stage %s deleted", stage.code)


def reorder_stages(items: list[dict], *, updated_by_user_id: int | None = None) -> list[WorkflowStage]:
    """
    Atomically set new sequence numbers.

    items: [{"id": stage_id, "sequence": n}, ...]

    Raises ValidationError when input is malformed, names an unknown stage,
    or the resulting sequence of any moved stage collides with another stage.
    """
    v = Violations()
    if not isinstance(items, list) or not items:
        v.add("stages", "must be a non-empty array")
        v.raise_if_any()

    moves: dict[int, int] = {}
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            v.add(f"stages[{idx}]", "must be an object with id and sequence")
            continue
        sid = coerce_int(v, f"stages[{idx}].id", item.get("id"), minimum=1)
        seq = coerce_int(v, f"stages[{idx}].sequence", item.get("sequence"), minimum=1)
        if sid is None or seq is None:
            continue
        if sid in moves:
            v.add(f"stages[{idx}].id", f"stage {sid} listed more than once")
            continue
        moves[sid] = seq
    v.raise_if_any()

    stages = {s.id: s for s in db.session.query(WorkflowStage).all()}
    for sid in moves:
        if sid not in stages:
            v.add("stages", f"stage {sid} does not exist")
    v.raise_if_any()

    final = {sid: moves.get(sid, stage.sequence) for sid, stage in stages.items()}
    by_sequence: dict[int, list[int]] = {}
    for sid, seq in final.items():
        by_sequence.setdefault(seq, []).append(sid)
    for seq, sids in sorted(by_sequence.items()):
        if len(sids) > 1 and any(sid in moves for sid in sids):
            v.add("stages", f"sequence {seq} would be shared by stages {sorted(sids)}")
    v.raise_if_any()

    for sid, seq in moves.items():
        stages[sid].sequence = seq
        stages[sid].updated_by_user_id = updated_by_user_id
    db.session.commit()
    return list_stages()


def clone_stage(stage_id: int, new_name: str, new_code: str, *, created_by_user_id: int | None = None) -> WorkflowStage:
    """
    Copy a stage's actions, required permissions and next stages under a new
    name and code. The clone starts inactive, right after the original.
    """
    original = get_stage(stage_id)

    v = Violations()
    name = clean_string(new_name)
    code = _normalize_code(new_code)
    check_length(v, "name", name, min_len=NAME_MIN, max_len=NAME_MAX)
    check_length(v, "code", code, min_len=CODE_MIN, max_len=CODE_MAX)
    if code:
        v.check(bool(CODE_PATTERN.match(code)), "code", "must contain only uppercase letters and underscores")
    v.raise_if_any()
    _ensure_code_available(code)

    clone = WorkflowStage(
        name=name,
        code=code,
        description=original.description,
        sequence=original.sequence + 1,
        allowed_actions=list(original.allowed_actions or []),
        is_active=False,
        created_by_user_id=created_by_user_id,
        updated_by_user_id=created_by_user_id,
    )
    clone.required_permissions = list(original.required_permissions)
    clone.next_stages = list(original.next_stages)

    db.session.add(clone)
    db.session.commit()
    return clone
