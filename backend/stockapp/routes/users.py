# Overview: Flask API routes for user records and roles.

# backend/stockapp/routes/users.py
"""
User management routes.

Listing, creating, deleting and role changes are admin only; a user may
read and edit their own record.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..responses import result_response
from ..services import user_service
from ..store import get_store, new_auth_provider
from ..validation import ValidationError, require_fields, require_json_object, require_str_fields

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_admin
def list_users():
    result = user_service.get_all_users(get_store(), g.identity)
    return result_response(result)


@users_bp.post("")
@require_auth
@require_admin
def create_user():
    """
    Create an account for someone else.

    Body: email, password (required); name, role, other profile fields.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        require_fields(data, "email", "password")
        require_str_fields(data, "email", "password", "name")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    profile = {k: v for k, v in data.items() if k not in ("email", "password")}
    result = user_service.create_user_by_admin(
        get_store(),
        new_auth_provider,
        g.identity,
        data["email"],
        data["password"],
        profile,
    )
    return result_response(result, success_status=201)


@users_bp.get("/<user_id>")
@require_auth
def get_user(user_id):
    result = user_service.get_user_by_id(get_store(), g.identity, user_id)
    return result_response(result)


@users_bp.patch("/<user_id>")
@require_auth
def update_user(user_id):
    try:
        data = require_json_object(request.get_json(silent=True))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = user_service.update_user_profile(get_store(), g.identity, user_id, data)
    return result_response(result)


@users_bp.delete("/<user_id>")
@require_auth
@require_admin
def delete_user(user_id):
    result = user_service.delete_user(get_store(), g.identity, user_id)
    return result_response(result)


@users_bp.put("/<user_id>/role")
@require_auth
@require_admin
def set_role(user_id):
    try:
        data = require_json_object(request.get_json(silent=True))
        require_fields(data, "role")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = user_service.set_user_role(
        get_store(),
        g.identity,
        user_id,
        data["role"],
        bootstrap_admin_email=current_app.config.get("BOOTSTRAP_ADMIN_EMAIL"),
    )
    return result_response(result)
