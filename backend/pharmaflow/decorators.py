# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import ForbiddenError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def _unauthorized(message: str):
    return jsonify({"error": message, "code": "UNAUTHORIZED", "details": {}, "retryable": False}), 401


def require_auth(f):
    """
    Require a bearer session token.

    Sets:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, idle or expired token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return _unauthorized("Authentication required")

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return _unauthorized("Invalid or expired token")

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_name: str):
    """Require a role permission; denials are written to security_events."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return _unauthorized("Authentication required")

            try:
                permission_service.require_permission(
                    user_id=g.current_user.id,
                    permission_name=permission_name,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                )
            except ForbiddenError as e:
                return jsonify(e.to_dict()), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
