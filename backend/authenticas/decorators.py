# Overview: Request and capability decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .services import session_service


def _is_authenticated() -> bool:
    return getattr(g, "principal", None) is not None


def require_auth(f):
    """
    Require a session token or an entity API key.

    Sets g.principal to the resolved Principal.

    SECURITY: Returns 401 if no credential is presented or it does not
    resolve (unknown, expired, revoked, or owner inactive).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        has_bearer = (request.headers.get("Authorization") or "").startswith("Bearer ")
        has_api_key = bool((request.headers.get("X-API-Key") or "").strip())
        if not has_bearer and not has_api_key:
            return jsonify({"error": "Authentication required"}), 401

        principal = session_service.resolve_principal(request.headers)
        if principal is None:
            return jsonify({"error": "Invalid or expired credentials"}), 401

        g.principal = principal
        return f(*args, **kwargs)

    return decorated_function


def require_capability(capability: str):
    """Require a capability from the principal's role table. Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            principal = g.principal
            if not principal.can(capability):
                current_app.logger.warning(
                    "Permission denied: role=%s via=%s capability=%s path=%s",
                    principal.role.value, principal.via, capability, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": capability,
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
