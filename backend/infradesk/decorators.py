# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .models import Role
from .services import session_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the authenticated User.
    Returns 401 if the header is missing, or the token is invalid, expired
    or revoked, or the user is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if user is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_roles(*roles: Role):
    """Require @require_auth first; 403 unless the user holds one of `roles`."""
    allowed = frozenset(Role(r) for r in roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401

            if user.role not in allowed:
                current_app.logger.warning(
                    "User %s (%s) denied access to %s %s", user.id, user.role.value, request.method, request.path
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(r.value for r in allowed),
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
