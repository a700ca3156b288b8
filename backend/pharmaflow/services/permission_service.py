# Overview: Role permission checks and security event logging.

"""
Permission Checking and Security Event Logging

WHY: Enforce role-based access control on administrative endpoints and
keep an audit trail of denials. Stage-scoped workflow permissions live in
stage_permission_service; this module covers the role layer and the
catalog bootstrap.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Log denials only: Permission grants are not logged
"""

from flask import current_app

from ..extensions import db
from ..models import UserRole, Role, RolePermission, Permission, SecurityEvent
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS, DEFAULT_ROLE_DESCRIPTIONS
from ..validation import DomainError, NotFoundError
from pharmaflow.time_utils import utcnow


class ForbiddenError(DomainError, PermissionError):
    """Authenticated, but lacking the role or stage-scoped permission."""
    code = "FORBIDDEN"
    status_code = 403


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    WHY: Immutable audit log for compliance and security monitoring.

    Commits immediately, so callers that must not persist partial work
    roll back their own unit of work before logging.

    event_type examples:
    - PERMISSION_DENIED
    - STAGE_ACTION_DENIED
    - ROLE_ASSIGNED
    - USER_CREATED
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_permissions(user_id: int) -> set[str]:
    """
    Get all permission names a user holds through roles.

    Returns set of permission names (e.g., {"workflow_view", "po_create"}).
    """
    rows = (
        db.session.query(Permission.name)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return {name for (name,) in rows}


def user_has_permission(user_id: int, permission_name: str) -> bool:
    return permission_name in get_user_permissions(user_id)


def require_permission(
    user_id: int,
    permission_name: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Require user to hold a role permission, raise ForbiddenError if not.

    Usage:
        require_permission(user.id, "workflow_manage", resource="/api/workflow/stages")
    """
    if user_has_permission(user_id, permission_name):
        return

    # Log only denials (policy: no granted logs)
    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_name,
        reason=f"Missing permission: {permission_name}",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    raise ForbiddenError(
        f"Permission denied: {permission_name}",
        details={"required_permission": permission_name},
    )


def get_user_role_names(user_id: int) -> list[str]:
    """Get list of role names for a user."""
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name)
        .all()
    )
    return [name for (name,) in rows]


def get_permissions_by_names(names) -> list[Permission]:
    """
    Resolve catalog names to Permission rows, preserving order.

    Raises NotFoundError naming every unknown permission.
    """
    names = list(dict.fromkeys(names or []))
    if not names:
        return []
    found = {p.name: p for p in db.session.query(Permission).filter(Permission.name.in_(names)).all()}
    missing = [n for n in names if n not in found]
    if missing:
        raise NotFoundError(
            f"Unknown permission(s): {', '.join(missing)}",
            details={"missing": missing},
        )
    return [found[n] for n in names]


def initialize_permissions() -> int:
    """
    Initialize all permission definitions in database.

    Idempotent: Safe to run multiple times. Existing rows get their
    resource/action/description refreshed from the catalog.
    """
    created_count = 0

    for name, resource, action, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(name=name).first()

        if not existing:
            db.session.add(Permission(
                name=name,
                resource=resource,
                action=action,
                description=description,
                category=category,
            ))
            created_count += 1
        else:
            existing.resource = resource
            existing.action = action
            existing.description = description
            existing.category = category

    db.session.commit()
    if created_count:
        current_app.logger.info("Seeded %d catalog permissions", created_count)
    return created_count


def create_default_roles() -> int:
    """Create the default roles if missing. Idempotent."""
    created_count = 0
    for role_name, description in DEFAULT_ROLE_DESCRIPTIONS.items():
        if db.session.query(Role).filter_by(name=role_name).first():
            continue
        db.session.add(Role(name=role_name, description=description))
        created_count += 1
    db.session.commit()
    return created_count


def assign_default_role_permissions() -> int:
    """
    Assign default permissions to roles based on DEFAULT_ROLE_PERMISSIONS.

    Idempotent: Safe to run multiple times (skips existing).
    """
    created_count = 0

    for role_name, permission_names in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(name=role_name).first()

        if not role:
            continue  # Role doesn't exist, skip

        for permission_name in permission_names:
            permission = db.session.query(Permission).filter_by(name=permission_name).first()

            if not permission:
                continue  # Permission doesn't exist, skip

            existing = db.session.query(RolePermission).filter_by(
                role_id=role.id,
                permission_id=permission.id
            ).first()

            if not existing:
                db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
                created_count += 1

    db.session.commit()
    return created_count
