# Overview: Flask API routes for product groups.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..responses import result_response
from ..services import catalog_service
from ..store import get_store
from ..validation import ValidationError, require_json_object

groups_bp = Blueprint("groups", __name__, url_prefix="/api/groups")


@groups_bp.get("")
@require_auth
def list_groups():
    return {"groups": catalog_service.get_product_groups(get_store())}


@groups_bp.post("")
@require_auth
@require_admin
def create_group():
    try:
        data = require_json_object(request.get_json(silent=True))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = catalog_service.add_product_group(get_store(), g.identity, data)
    return result_response(result, success_status=201)


@groups_bp.get("/<group_id>/products")
@require_auth
def list_group_products(group_id):
    result = catalog_service.get_products_by_group(get_store(), group_id)
    return result_response(result)
