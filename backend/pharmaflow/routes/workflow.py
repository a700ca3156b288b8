# Overview: Flask API routes for executing and inspecting workflow transitions.

"""
Workflow operation endpoints.

The acting user is always the authenticated session user. Stage-level
authorization happens inside the engine, so execute/validate only need a
session; the read-only views need workflow_view / workflow_statistics.
"""

from flask import Blueprint, request, jsonify, g

from ..api_errors import error_response
from ..decorators import require_auth, require_permission
from ..services import workflow_reporting_service
from ..services.workflow_engine import get_engine
from ..validation import DomainError, Violations, clean_string, coerce_int

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/workflow")


def _transition_request(data: dict, *, with_version: bool) -> dict:
    v = Violations()
    entity_type = clean_string(data.get("entity_type"))
    v.check(bool(entity_type), "entity_type", "is required")
    entity_id = coerce_int(v, "entity_id", data.get("entity_id"), minimum=1)
    action = clean_string(data.get("action"))
    v.check(bool(action), "action", "is required")

    fields = data.get("fields")
    if fields is not None and not isinstance(fields, dict):
        v.add("fields", "must be an object")
        fields = None

    remarks = data.get("remarks")
    if remarks is not None and not isinstance(remarks, str):
        v.add("remarks", "must be a string")

    target_stage = data.get("target_stage")
    if target_stage is not None and (isinstance(target_stage, bool) or not isinstance(target_stage, (int, str))):
        v.add("target_stage", "must be a stage id or code")

    cleaned = {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "target_stage": target_stage,
        "remarks": remarks,
        "fields": fields,
    }
    if with_version and data.get("expected_version") is not None:
        cleaned["expected_version"] = coerce_int(v, "expected_version", data.get("expected_version"), minimum=1)
    v.raise_if_any()
    return cleaned


@workflow_bp.post("/execute")
@require_auth
def execute_transition():
    """
    Move an entity along a transition rule.

    Request body:
    {
        "entity_type": "purchase_order" | "invoice_receiving" | "quality_control" | "warehouse_approval",
        "entity_id": int,
        "action": str,
        "target_stage": stage id or code (optional, picks among several routes),
        "remarks": str (optional),
        "fields": {...} (optional entity fields to write),
        "expected_version": int (optional optimistic check)
    }

    Returns:
        200: Transition applied (plus any auto-transitions)
        400: Malformed request
        403: Missing stage permission
        404: Entity, user or current stage missing
        409: Concurrent modification (retryable)
        422: Transition rejected (reason tells which rule)
        500: Auto-transition loop
        504: Timed out (retryable)
    """
    data = request.get_json(silent=True) or {}
    try:
        params = _transition_request(data, with_version=True)
        result = get_engine().execute_transition(
            params.pop("entity_type"),
            params.pop("entity_id"),
            params.pop("action"),
            g.current_user.id,
            **params,
        )
    except DomainError as e:
        return error_response(e)
    return jsonify(result.to_dict())


@workflow_bp.post("/validate")
@require_auth
def validate_action():
    """Pre-flight check for execute. Always 200 for a well-formed request: {valid, reason?}."""
    data = request.get_json(silent=True) or {}
    try:
        params = _transition_request(data, with_version=False)
    except DomainError as e:
        return error_response(e)
    result = get_engine().validate_workflow_action(
        params.pop("entity_type"),
        params.pop("entity_id"),
        params.pop("action"),
        g.current_user.id,
        **params,
    )
    return jsonify(result.to_dict())


@workflow_bp.get("/history/<entity_type>/<int:entity_id>")
@require_auth
@require_permission("workflow_view")
def history(entity_type: str, entity_id: int):
    """
    Query params:
    - page: int (default 1)
    - limit: int 1..100 (default 20)
    """
    try:
        page = get_engine().get_workflow_history(
            entity_type,
            entity_id,
            page=request.args.get("page", 1),
            limit=request.args.get("limit", 20),
        )
    except DomainError as e:
        return error_response(e)
    return jsonify(page.to_dict())


@workflow_bp.get("/visualization")
@require_auth
@require_permission("workflow_view")
def visualization():
    """Query params: format = json (default) | mermaid | graphviz"""
    try:
        graph = get_engine().get_workflow_visualization(request.args.get("format", "json"))
    except DomainError as e:
        return error_response(e)
    return jsonify(graph)


@workflow_bp.get("/statistics")
@require_auth
@require_permission("workflow_statistics")
def statistics():
    """
    Query params (all optional):
    - entity_type (default purchase_order)
    - from_date, to_date: ISO-8601 on entity creation time
    - stage_id: int
    """
    try:
        stats = workflow_reporting_service.get_workflow_statistics(
            request.args.get("entity_type", "purchase_order"),
            from_date=request.args.get("from_date"),
            to_date=request.args.get("to_date"),
            stage_id=request.args.get("stage_id"),
        )
    except DomainError as e:
        return error_response(e)
    return jsonify(stats)
