# Overview: Flask API routes for the transition rule table.

from flask import Blueprint, request, jsonify, g

from ..api_errors import error_response
from ..decorators import require_auth, require_permission
from ..services import transition_service
from ..validation import DomainError

workflow_transitions_bp = Blueprint(
    "workflow_transitions", __name__, url_prefix="/api/workflow/transitions"
)


@workflow_transitions_bp.get("")
@require_auth
@require_permission("workflow_view")
def list_transitions():
    """
    List transition rules.

    Query params (all optional):
    - from_stage_id, to_stage_id: int
    - action: str
    - auto_transition: bool
    """
    auto = request.args.get("auto_transition")
    transitions = transition_service.list_transitions(
        from_stage_id=request.args.get("from_stage_id", type=int),
        to_stage_id=request.args.get("to_stage_id", type=int),
        action=request.args.get("action"),
        auto_transition=None if auto is None else auto.lower() == "true",
    )
    return jsonify({"transitions": [t.to_dict() for t in transitions], "count": len(transitions)})


@workflow_transitions_bp.get("/<int:transition_id>")
@require_auth
@require_permission("workflow_view")
def get_transition(transition_id: int):
    try:
        transition = transition_service.get_transition(transition_id)
    except DomainError as e:
        return error_response(e)
    return jsonify(transition.to_dict())


@workflow_transitions_bp.post("")
@require_auth
@require_permission("workflow_manage")
def create_transition():
    """
    Create a transition rule.

    Request body:
    {
        "from_stage_id": int, "to_stage_id": int, "action": str,
        "conditions": {...} (optional tagged predicate),
        "auto_transition": bool (optional),
        "required_fields": [str, ...] (optional),
        "notification_template": str (optional)
    }

    Returns:
        201: Created
        400: Validation errors
        404: Unknown stage
        409: Same (from, to, action) rule exists
    """
    data = request.get_json(silent=True) or {}
    try:
        transition = transition_service.create_transition(data, created_by_user_id=g.current_user.id)
    except DomainError as e:
        return error_response(e)
    return jsonify(transition.to_dict()), 201


@workflow_transitions_bp.put("/<int:transition_id>")
@require_auth
@require_permission("workflow_manage")
def update_transition(transition_id: int):
    data = request.get_json(silent=True) or {}
    try:
        transition = transition_service.update_transition(transition_id, data)
    except DomainError as e:
        return error_response(e)
    return jsonify(transition.to_dict())


@workflow_transitions_bp.delete("/<int:transition_id>")
@require_auth
@require_permission("workflow_manage")
def delete_transition(transition_id: int):
    try:
        transition_service.delete_transition(transition_id)
    except DomainError as e:
        return error_response(e)
    return jsonify({"message": "Transition deleted", "transition_id": transition_id})
