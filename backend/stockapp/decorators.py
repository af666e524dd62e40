# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .services.identity_service import IdentityContext
from .services.role_policy import is_admin
from .store import AuthError, SessionExpiredError, get_store, new_auth_provider


def _is_authenticated() -> bool:
    return getattr(g, "identity", None) is not None


def require_auth(f):
    """
    Require a signed-in session and resolve the caller's identity.

    Sets the following Flask g attributes:
    - g.auth_provider: provider restored from the bearer token
    - g.identity_context: IdentityContext for this request (torn down after it)
    - g.identity: the resolved user record

    Returns 401 if the Authorization header is missing or the token is
    invalid, expired or revoked.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        provider = new_auth_provider()
        try:
            provider.restore(token)
        except SessionExpiredError:
            return jsonify({"error": "Invalid or expired token"}), 401
        except AuthError:
            current_app.logger.exception("Session restore failed")
            return jsonify({"error": "Authentication unavailable"}), 503

        context = IdentityContext(
            get_store(),
            bootstrap_admin_email=current_app.config.get("BOOTSTRAP_ADMIN_EMAIL"),
        ).init(provider)

        g.auth_provider = provider
        g.identity_context = context
        g.identity = context.identity

        if context.identity is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require the admin role; use after @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401

        if not is_admin(g.identity):
            return jsonify({
                "error": "Permission denied",
                "required_role": "admin",
            }), 403

        return f(*args, **kwargs)

    return decorated_function
