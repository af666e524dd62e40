# Overview: Flask API routes for sign-in, sign-up and the current identity.

# backend/stockapp/routes/auth.py
"""
Authentication API routes.

Sessions are bearer tokens issued by the auth provider; the token must be
sent as `Authorization: Bearer <token>` on protected routes.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..responses import result_response
from ..services import user_service
from ..services.identity_service import resolve_identity
from ..store import AuthError, get_store, new_auth_provider
from ..validation import ValidationError, require_fields, require_json_object, require_str_fields

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _signed_in_payload(auth) -> dict:
    identity = resolve_identity(
        get_store(),
        auth.current_user,
        bootstrap_admin_email=current_app.config.get("BOOTSTRAP_ADMIN_EMAIL"),
    )
    return {"success": True, "token": auth.session_token, "user": identity}


@auth_bp.post("/login")
def login_route():
    """
    Authenticate with email and password.

    Returns the resolved user record and a session token.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        require_fields(data, "email", "password")
        require_str_fields(data, "email", "password", "name")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    auth = new_auth_provider()
    result = user_service.login_user(auth, data["email"], data["password"])
    if not result:
        current_app.logger.info("failed sign-in for %s", data["email"])
        return result_response(result, overrides={"auth_error": 401})

    return _signed_in_payload(auth), 200


@auth_bp.post("/register")
def register_route():
    """Self sign-up; new accounts always get the user role."""
    if not current_app.config.get("ALLOW_SELF_REGISTRATION", True):
        return jsonify({
            "error": "Self-registration is disabled. Contact an administrator to create an account."
        }), 403

    try:
        data = require_json_object(request.get_json(silent=True))
        require_fields(data, "email", "password")
        require_str_fields(data, "email", "password", "name")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    profile = {k: v for k, v in data.items() if k not in ("email", "password")}
    auth = new_auth_provider()
    result = user_service.register_user(
        get_store(),
        auth,
        data["email"],
        data["password"],
        profile,
        bootstrap_admin_email=current_app.config.get("BOOTSTRAP_ADMIN_EMAIL"),
    )
    if not result:
        return result_response(result)

    return _signed_in_payload(auth), 201


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        g.identity_context.logout()
    except AuthError:
        current_app.logger.exception("Sign-out failed")
        return jsonify({"error": "Sign-out failed"}), 500
    return {"success": True}


@auth_bp.get("/me")
@require_auth
def me_route():
    return {"user": g.identity}
