# Overview: Flask API routes for products, stock updates and stock history.

# backend/stockapp/routes/products.py
"""
Product routes.

SECURITY: All routes require authentication.
- Reads are open to any signed-in user
- Catalog writes and stock updates require the admin role

Stock is never changed through PATCH; POST /<id>/stock runs the stock
transaction and records a history entry.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..responses import result_response
from ..services import catalog_service, stock_service
from ..store import get_store
from ..validation import (
    ValidationError,
    coerce_int,
    optional_str,
    require_json_object,
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/count")
@require_auth
def count_products():
    return {"total": catalog_service.get_total_products(get_store())}


@products_bp.post("")
@require_auth
@require_admin
def create_product():
    """
    Create a product in an existing group.

    Body: name, groupId (required); mrp, unit, description, imageUri,
    stock, cartons (optional, counters default to 0).
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        for field in ("stock", "cartons"):
            if data.get(field) is not None:
                data[field] = coerce_int(field, data[field])
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = catalog_service.add_product(get_store(), g.identity, data)
    return result_response(result, success_status=201)


@products_bp.get("/<product_id>")
@require_auth
def get_product(product_id):
    result = catalog_service.get_product_by_id(get_store(), product_id)
    return result_response(result)


@products_bp.patch("/<product_id>")
@require_auth
@require_admin
def update_product(product_id):
    try:
        data = require_json_object(request.get_json(silent=True))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = catalog_service.update_product(get_store(), g.identity, product_id, data)
    return result_response(result)


@products_bp.delete("/<product_id>")
@require_auth
@require_admin
def delete_product(product_id):
    result = catalog_service.delete_product(get_store(), g.identity, product_id)
    return result_response(result)


@products_bp.post("/<product_id>/stock")
@require_auth
@require_admin
def update_stock(product_id):
    """
    Set stock and cartons.

    Body: stock (int), cartons (int), changeReason (optional).
    Returns the history entry; 409 when concurrent writers kept conflicting.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        new_stock = coerce_int("stock", data.get("stock"))
        new_cartons = coerce_int("cartons", data.get("cartons"))
        reason = optional_str(data, "changeReason")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = stock_service.update_product_stock(
        get_store(),
        g.identity,
        product_id,
        new_stock,
        new_cartons,
        reason,
    )
    if result.code == "store_error":
        current_app.logger.error("Stock update failed for %s: %s", product_id, result.error)
    return result_response(result)


@products_bp.get("/<product_id>/history")
@require_auth
def stock_history(product_id):
    """History entries for the product, most recent first."""
    result = stock_service.get_stock_history_by_product(get_store(), product_id)
    return result_response(result)
