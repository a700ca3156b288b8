# Overview: Flask API routes for per-user, per-stage permission grants.

"""
Stage permission endpoints.

Assigning and revoking needs workflow_assign; listing needs workflow_view.
Users may always check their own capability on a stage.
"""

from flask import Blueprint, request, jsonify, g

from ..api_errors import error_response
from ..decorators import require_auth, require_permission
from ..services import permission_service, stage_permission_service, workflow_reporting_service
from ..validation import DomainError, NotFoundError, Violations, coerce_int

stage_permissions_bp = Blueprint(
    "stage_permissions", __name__, url_prefix="/api/workflow/permissions"
)


@stage_permissions_bp.post("/assign")
@require_auth
@require_permission("workflow_assign")
def assign():
    """
    Upsert one grant.

    Request body:
    {
        "user_id": int, "stage_id": int,
        "permissions": [permission_id, ...] (may be empty),
        "expiry_date": ISO-8601 (optional, null = never expires),
        "remarks": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        assignment = stage_permission_service.assign(data, assigned_by=g.current_user)
    except DomainError as e:
        return error_response(e)
    return jsonify(assignment.to_dict())


@stage_permissions_bp.post("/revoke")
@require_auth
@require_permission("workflow_assign")
def revoke():
    """
    Request body:
    {"user_id": int, "stage_id": int, "permissions": [permission_id, ...] (optional)}

    Without permissions the whole grant is deactivated. A grant left with no
    permissions is deactivated too.
    """
    data = request.get_json(silent=True) or {}
    try:
        assignment = stage_permission_service.revoke(
            data.get("user_id"),
            data.get("stage_id"),
            data.get("permissions"),
            revoked_by=g.current_user,
        )
        if assignment is None:
            raise NotFoundError(
                "No stage permission found for this user and stage",
                details={"user_id": data.get("user_id"), "stage_id": data.get("stage_id")},
            )
    except DomainError as e:
        return error_response(e)
    return jsonify(assignment.to_dict())


@stage_permissions_bp.post("/bulk-assign")
@require_auth
@require_permission("workflow_assign")
def bulk_assign():
    """
    Request body: {"assignments": [{user_id, stage_id, permissions, expiry_date?, remarks?}, ...]}

    Items succeed or fail independently. Always 200 once the list itself is
    well formed; inspect each result's status.
    """
    data = request.get_json(silent=True) or {}
    try:
        outcomes = stage_permission_service.bulk_assign(data.get("assignments"), assigned_by=g.current_user)
    except DomainError as e:
        return error_response(e)

    succeeded = sum(1 for o in outcomes if o.ok)
    return jsonify({
        "results": [o.to_dict() for o in outcomes],
        "summary": {
            "total": len(outcomes),
            "succeeded": succeeded,
            "failed": len(outcomes) - succeeded,
        },
    })


@stage_permissions_bp.post("/check")
@require_auth
def check():
    """
    Request body: {"stage_id": int, "action": str, "user_id": int (optional, default self)}

    Checking another user's capability needs workflow_view.
    """
    data = request.get_json(silent=True) or {}
    v = Violations()
    stage_id = coerce_int(v, "stage_id", data.get("stage_id"), minimum=1)
    user_id = data.get("user_id", g.current_user.id)
    user_id = coerce_int(v, "user_id", user_id, minimum=1)
    action = (data.get("action") or "").strip().lower()
    v.check(bool(action), "action", "is required")

    try:
        v.raise_if_any()
        if user_id != g.current_user.id:
            permission_service.require_permission(
                g.current_user.id,
                "workflow_view",
                resource=request.path,
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            )
        allowed = stage_permission_service.can_perform_action(user_id, stage_id, action)
        grant = stage_permission_service.get_active_permissions(user_id, stage_id)
    except DomainError as e:
        return error_response(e)

    return jsonify({
        "user_id": user_id,
        "stage_id": stage_id,
        "action": action,
        "allowed": allowed,
        "permissions": sorted(grant.permission_names) if grant else [],
    })


@stage_permissions_bp.get("/user/<int:user_id>/stage/<int:stage_id>")
@require_auth
@require_permission("workflow_view")
def user_stage_permission(user_id: int, stage_id: int):
    """The grant record for the pair (expired grants included and flagged)."""
    try:
        assignment = stage_permission_service.get_user_stage_permission(user_id, stage_id)
    except DomainError as e:
        return error_response(e)
    return jsonify({
        "user_id": user_id,
        "stage_id": stage_id,
        "assignment": assignment.to_dict() if assignment else None,
    })


@stage_permissions_bp.get("/user/<int:user_id>")
@require_auth
@require_permission("workflow_view")
def user_assignments(user_id: int):
    try:
        assignments = stage_permission_service.list_user_assignments(user_id)
    except DomainError as e:
        return error_response(e)
    return jsonify({"assignments": [a.to_dict() for a in assignments], "count": len(assignments)})


@stage_permissions_bp.get("/stage/<int:stage_id>/users")
@require_auth
@require_permission("workflow_view")
def stage_users(stage_id: int):
    """
    Query params:
    - include_inactive: bool (default false)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    try:
        assignments = stage_permission_service.list_stage_users(stage_id, include_inactive=include_inactive)
        summary = workflow_reporting_service.stage_summary(stage_id)
    except DomainError as e:
        return error_response(e)
    return jsonify({
        "users": [a.to_dict() for a in assignments],
        "count": len(assignments),
        "summary": summary,
    })
