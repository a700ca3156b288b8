# Overview: Transition rule table operations.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import WorkflowStage, WorkflowTransition
from ..validation import (
    ConflictError,
    NotFoundError,
    Violations,
    check_length,
    clean_string,
    coerce_bool,
    coerce_int,
)
from ..workflow_actions import workflow_actions
from .workflow_conditions import ConditionEvaluator, default_condition_evaluator


TEMPLATE_MAX = 100


def _condition_evaluator() -> ConditionEvaluator:
    engine = current_app.extensions.get("workflow_engine")
    if engine is not None:
        return engine.conditions
    return default_condition_evaluator()


def _clean_required_fields(v: Violations, value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        v.add("required_fields", "must be an array")
        return []
    fields: list[str] = []
    for idx, raw in enumerate(value):
        name = clean_string(raw) if isinstance(raw, str) else None
        if not name:
            v.add(f"required_fields[{idx}]", "must be a non-empty field name")
            continue
        if name not in fields:
            fields.append(name)
    return fields


def _validate_transition_payload(payload: dict, *, partial: bool) -> dict:
    payload = payload or {}
    v = Violations()
    cleaned: dict = {}

    def present(key: str) -> bool:
        return not partial or key in payload

    for key in ("from_stage_id", "to_stage_id"):
        if present(key):
            cleaned[key] = coerce_int(v, key, payload.get(key), minimum=1)

    if present("action"):
        action = clean_string(payload.get("action"))
        action = action.lower() if action else action
        if not action:
            v.add("action", "is required")
        elif action not in workflow_actions():
            v.add("action", f"invalid action type: {action!r}")
        cleaned["action"] = action

    if "conditions" in payload:
        conditions = payload.get("conditions") or None
        for err in _condition_evaluator().validate(conditions):
            v.add(err["field"], err["message"])
        cleaned["conditions"] = conditions

    if "auto_transition" in payload:
        auto = coerce_bool(v, "auto_transition", payload.get("auto_transition"))
        cleaned["auto_transition"] = bool(auto)

    if "required_fields" in payload:
        cleaned["required_fields"] = _clean_required_fields(v, payload.get("required_fields"))

    if "notification_template" in payload:
        template = clean_string(payload.get("notification_template")) or None
        check_length(v, "notification_template", template, max_len=TEMPLATE_MAX, required=False)
        cleaned["notification_template"] = template

    v.raise_if_any()
    return cleaned


def _require_stages(*stage_ids: int) -> None:
    missing = [sid for sid in dict.fromkeys(stage_ids) if db.session.get(WorkflowStage, sid) is None]
    if missing:
        raise NotFoundError(
            f"Workflow stage(s) not found: {', '.join(str(m) for m in missing)}",
            details={"stage_ids": missing},
        )


def _ensure_unique(from_stage_id: int, to_stage_id: int, action: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(WorkflowTransition.id).filter_by(
        from_stage_id=from_stage_id, to_stage_id=to_stage_id, action=action
    )
    if exclude_id is not None:
        query = query.filter(WorkflowTransition.id != exclude_id)
    if query.first():
        raise ConflictError(
            "A transition with the same from stage, to stage and action already exists",
            details={"from_stage_id": from_stage_id, "to_stage_id": to_stage_id, "action": action},
        )


def get_transition(transition_id: int) -> WorkflowTransition:
    transition = db.session.get(WorkflowTransition, transition_id)
    if not transition:
        raise NotFoundError(f"Workflow transition {transition_id} not found",
                            details={"transition_id": transition_id})
    return transition


def list_transitions(
    *,
    from_stage_id: int | None = None,
    to_stage_id: int | None = None,
    action: str | None = None,
    auto_transition: bool | None = None,
) -> list[WorkflowTransition]:
    query = db.session.query(WorkflowTransition)
    if from_stage_id is not None:
        query = query.filter(WorkflowTransition.from_stage_id == from_stage_id)
    if to_stage_id is not None:
        query = query.filter(WorkflowTransition.to_stage_id == to_stage_id)
    if action:
        query = query.filter(WorkflowTransition.action == action.lower())
    if auto_transition is not None:
        query = query.filter(WorkflowTransition.auto_transition.is_(auto_transition))
    return query.order_by(WorkflowTransition.from_stage_id, WorkflowTransition.id).all()


def list_transitions_for_stage(stage_id: int) -> dict[str, list[WorkflowTransition]]:
    """Outgoing and incoming rules of one stage."""
    _require_stages(stage_id)
    return {
        "outgoing": list_transitions(from_stage_id=stage_id),
        "incoming": list_transitions(to_stage_id=stage_id),
    }


def create_transition(payload: dict, *, created_by_user_id: int | None = None) -> WorkflowTransition:
    """
    Create a transition rule.

    payload keys: from_stage_id, to_stage_id, action, conditions?,
    auto_transition?, required_fields?, notification_template?

    Raises:
        ValidationError: malformed input (all violations)
        NotFoundError: from/to stage missing
        ConflictError: identical (from, to, action) rule exists
    """
    cleaned = _validate_transition_payload(payload, partial=False)
    _require_stages(cleaned["from_stage_id"], cleaned["to_stage_id"])
    _ensure_unique(cleaned["from_stage_id"], cleaned["to_stage_id"], cleaned["action"])

    transition = WorkflowTransition(
        from_stage_id=cleaned["from_stage_id"],
        to_stage_id=cleaned["to_stage_id"],
        action=cleaned["action"],
        conditions=cleaned.get("conditions"),
        auto_transition=cleaned.get("auto_transition", False),
        required_fields=cleaned.get("required_fields", []),
        notification_template=cleaned.get("notification_template"),
        created_by_user_id=created_by_user_id,
    )
    db.session.add(transition)
    db.session.commit()
    return transition


def update_transition(transition_id: int, payload: dict) -> WorkflowTransition:
    """Update a transition rule; only keys present in payload change."""
    transition = get_transition(transition_id)
    cleaned = _validate_transition_payload(payload, partial=True)

    from_id = cleaned.get("from_stage_id", transition.from_stage_id)
    to_id = cleaned.get("to_stage_id", transition.to_stage_id)
    action = cleaned.get("action", transition.action)
    _require_stages(from_id, to_id)
    _ensure_unique(from_id, to_id, action, exclude_id=transition.id)

    for key, value in cleaned.items():
        setattr(transition, key, value)
    db.session.commit()
    return transition


def delete_transition(transition_id: int) -> None:
    transition = get_transition(transition_id)
    db.session.delete(transition)
    db.session.commit()
