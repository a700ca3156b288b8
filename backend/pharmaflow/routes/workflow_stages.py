# Overview: Flask API routes for the workflow stage registry.

"""
Stage registry endpoints.

Reads need workflow_view; every write needs workflow_manage.
"""

from flask import Blueprint, request, jsonify, g

from ..api_errors import error_response
from ..decorators import require_auth, require_permission
from ..services import stage_service, transition_service
from ..validation import DomainError

workflow_stages_bp = Blueprint("workflow_stages", __name__, url_prefix="/api/workflow/stages")


@workflow_stages_bp.get("")
@require_auth
@require_permission("workflow_view")
def list_stages():
    """
    List stages ordered by sequence.

    Query params:
    - active_only: bool (default false)
    """
    active_only = request.args.get("active_only", "false").lower() == "true"
    stages = stage_service.list_stages(active_only=active_only)
    return jsonify({"stages": [s.to_dict() for s in stages], "count": len(stages)})


@workflow_stages_bp.get("/<int:stage_id>")
@require_auth
@require_permission("workflow_view")
def get_stage(stage_id: int):
    try:
        stage = stage_service.get_stage(stage_id)
    except DomainError as e:
        return error_response(e)
    return jsonify(stage.to_dict())


@workflow_stages_bp.post("")
@require_auth
@require_permission("workflow_manage")
def create_stage():
    """
    Create a stage.

    Request body:
    {
        "name": str, "code": str (A-Z and _), "sequence": int >= 1,
        "allowed_actions": [str, ...],
        "description": str (optional),
        "required_permissions": [permission_id, ...] (optional),
        "next_stages": [stage_id, ...] (optional)
    }

    Returns:
        201: Stage created
        400: Validation errors (all of them)
        409: Code already in use
    """
    data = request.get_json(silent=True) or {}
    try:
        stage = stage_service.create_stage(data, created_by_user_id=g.current_user.id)
    except DomainError as e:
        return error_response(e)
    return jsonify(stage.to_dict()), 201


@workflow_stages_bp.put("/<int:stage_id>")
@require_auth
@require_permission("workflow_manage")
def update_stage(stage_id: int):
    data = request.get_json(silent=True) or {}
    try:
        stage = stage_service.update_stage(stage_id, data, updated_by_user_id=g.current_user.id)
    except DomainError as e:
        return error_response(e)
    return jsonify(stage.to_dict())


@workflow_stages_bp.delete("/<int:stage_id>")
@require_auth
@require_permission("workflow_manage")
def delete_stage(stage_id: int):
    """
    Delete an unreferenced stage.

    Returns:
        200: Deleted
        404: Unknown stage
        409: Stage still referenced (details list the references)
    """
    try:
        stage_service.delete_stage(stage_id)
    except DomainError as e:
        return error_response(e)
    return jsonify({"message": "Stage deleted", "stage_id": stage_id})


@workflow_stages_bp.post("/reorder")
@require_auth
@require_permission("workflow_manage")
def reorder_stages():
    """
    Request body:
    {"stages": [{"id": int, "sequence": int}, ...]}
    """
    data = request.get_json(silent=True) or {}
    try:
        stages = stage_service.reorder_stages(data.get("stages"), updated_by_user_id=g.current_user.id)
    except DomainError as e:
        return error_response(e)
    return jsonify({"stages": [s.to_dict() for s in stages], "count": len(stages)})


@workflow_stages_bp.post("/<int:stage_id>/clone")
@require_auth
@require_permission("workflow_manage")
def clone_stage(stage_id: int):
    """Request body: {"name": str, "code": str}. The clone starts inactive."""
    data = request.get_json(silent=True) or {}
    try:
        clone = stage_service.clone_stage(
            stage_id, data.get("name"), data.get("code"), created_by_user_id=g.current_user.id
        )
    except DomainError as e:
        return error_response(e)
    return jsonify(clone.to_dict()), 201


@workflow_stages_bp.get("/<int:stage_id>/transitions")
@require_auth
@require_permission("workflow_view")
def stage_transitions(stage_id: int):
    try:
        rules = transition_service.list_transitions_for_stage(stage_id)
    except DomainError as e:
        return error_response(e)
    return jsonify({
        "stage_id": stage_id,
        "outgoing": [t.to_dict() for t in rules["outgoing"]],
        "incoming": [t.to_dict() for t in rules["incoming"]],
    })
