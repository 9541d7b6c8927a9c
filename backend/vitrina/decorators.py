# Overview: Request decorators for API routes (bearer auth, role checks, branch scope).

from functools import wraps

from flask import g, jsonify, request

from .models.auth import ROLE_ADMIN
from .services import session_service


def require_auth(f):
    """
    Require a valid bearer token.

    Sets:
    - g.current_user: the authenticated User
    - g.branch_id: the user's home branch (may be None for admins)
    - g.session_context: the full SessionContext
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.branch_id = context.branch_id
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require one of the given roles. Admins always pass."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"error": "Authentication required"}), 401
            role = g.current_user.role
            if role != ROLE_ADMIN and role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def scoped_branch_id(requested=None):
    """
    Branch the current request acts on.

    Returns (branch_id, None) or (None, error_response). Non-admin users are
    confined to their home branch.
    """
    user = g.current_user
    if requested in (None, ""):
        if g.branch_id is None:
            return None, (jsonify({"error": "branch_id is required"}), 400)
        return g.branch_id, None

    try:
        branch_id = int(requested)
    except (TypeError, ValueError):
        return None, (jsonify({"error": "branch_id must be an integer"}), 400)

    if user.role != ROLE_ADMIN and g.branch_id is not None and branch_id != g.branch_id:
        return None, (jsonify({"error": "Branch access denied"}), 403)
    return branch_id, None
