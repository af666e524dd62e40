# Overview: Product groups and products: admin writes and one-shot reads.

from __future__ import annotations

import logging
from typing import Optional

from ..store import DocumentNotFoundError, DocumentStore, Filter, StoreError
from ..time_utils import now_iso
from ..validation import ValidationError, optional_str
from .results import OperationResult
from .role_policy import is_admin
from .stock_service import PRODUCTS

logger = logging.getLogger(__name__)

PRODUCT_GROUPS = "productGroups"

# Editable outside the stock protocol; last writer wins
PRODUCT_METADATA_FIELDS = {"name", "mrp", "unit", "description", "imageUri", "groupId"}
# Owned by the stock protocol
STOCK_FIELDS = {"stock", "cartons", "lastUpdated"}


def _denied(action: str) -> OperationResult:
    return OperationResult.fail(f"Admin role required to {action}", "permission_denied")


# =============================================================================
# PRODUCT GROUPS
# =============================================================================


def add_product_group(store: DocumentStore, identity: Optional[dict], group_data: dict) -> OperationResult:
    if not is_admin(identity):
        return _denied("create product groups")

    try:
        name = optional_str(group_data, "name").strip()
    except ValidationError as exc:
        return OperationResult.fail(str(exc), "validation")
    if not name:
        return OperationResult.fail("name is required", "validation")

    document = {
        "name": name,
        "description": group_data.get("description") or "",
        "createdAt": now_iso(),
    }
    try:
        group_id = store.add_document(PRODUCT_GROUPS, document)
    except StoreError as exc:
        logger.error("Error adding product group: %s", exc)
        return OperationResult.fail(str(exc), "store_error")
    return OperationResult.ok(id=group_id)


def get_product_groups(store: DocumentStore) -> list[dict]:
    try:
        return store.query_collection(PRODUCT_GROUPS)
    except StoreError as exc:
        logger.error("Error getting product groups: %s", exc)
        return []


# =============================================================================
# PRODUCTS
# =============================================================================


def add_product(store: DocumentStore, identity: Optional[dict], product_data: dict) -> OperationResult:
    """Create a product in an existing group; stock and cartons start at the given values or 0."""
    if not is_admin(identity):
        return _denied("create products")

    try:
        name = optional_str(product_data, "name").strip()
        group_id = optional_str(product_data, "groupId")
    except ValidationError as exc:
        return OperationResult.fail(str(exc), "validation")
    if not name:
        return OperationResult.fail("name is required", "validation")
    if not group_id:
        return OperationResult.fail("groupId is required", "validation")

    unknown = set(product_data) - PRODUCT_METADATA_FIELDS - {"stock", "cartons"}
    if unknown:
        return OperationResult.fail(f"Field not allowed: {', '.join(sorted(unknown))}", "validation")

    def _body(tx):
        if tx.get(PRODUCT_GROUPS, group_id) is None:
            raise DocumentNotFoundError(PRODUCT_GROUPS, group_id)
        timestamp = now_iso()
        product_id = tx.new_id()
        tx.set(PRODUCTS, product_id, {
            **{k: v for k, v in product_data.items() if k in PRODUCT_METADATA_FIELDS},
            "name": name,
            "stock": product_data.get("stock") or 0,
            "cartons": product_data.get("cartons") or 0,
            "createdAt": timestamp,
            "lastUpdated": timestamp,
        })
        return product_id

    try:
        product_id = store.run_transaction(_body)
    except DocumentNotFoundError:
        return OperationResult.fail("Product group not found", "not_found")
    except StoreError as exc:
        logger.error("Error adding product: %s", exc)
        return OperationResult.fail(str(exc), "store_error")
    return OperationResult.ok(id=product_id)


def get_products_by_group(store: DocumentStore, group_id: str) -> OperationResult:
    try:
        products = store.query_collection(PRODUCTS, [Filter("groupId", group_id)])
    except StoreError as exc:
        return OperationResult.fail(str(exc), "store_error")
    return OperationResult.ok(products=products)


def get_product_by_id(store: DocumentStore, product_id: str) -> OperationResult:
    try:
        product = store.get_document(PRODUCTS, product_id)
    except StoreError as exc:
        return OperationResult.fail(str(exc), "store_error")
    if product is None:
        return OperationResult.fail("Product not found", "not_found")
    return OperationResult.ok(product=product)


def get_total_products(store: DocumentStore) -> int:
    try:
        return len(store.query_collection(PRODUCTS))
    except StoreError as exc:
        logger.error("Error getting total products: %s", exc)
        return 0


def update_product(
    store: DocumentStore,
    identity: Optional[dict],
    product_id: str,
    product_data: dict,
) -> OperationResult:
    """Edit product metadata. Stock counters are rejected: they change only via update_product_stock."""
    if not is_admin(identity):
        return _denied("edit products")

    stock_fields = STOCK_FIELDS & set(product_data)
    if stock_fields:
        return OperationResult.fail(
            f"{', '.join(sorted(stock_fields))} can only be changed through a stock update",
            "validation",
        )
    unknown = set(product_data) - PRODUCT_METADATA_FIELDS
    if unknown:
        return OperationResult.fail(f"Field not allowed: {', '.join(sorted(unknown))}", "validation")
    try:
        if "name" in product_data and not optional_str(product_data, "name").strip():
            return OperationResult.fail("name cannot be empty", "validation")
        if "groupId" in product_data and not optional_str(product_data, "groupId"):
            return OperationResult.fail("groupId cannot be empty", "validation")
    except ValidationError as exc:
        return OperationResult.fail(str(exc), "validation")

    def _body(tx):
        if tx.get(PRODUCTS, product_id) is None:
            raise DocumentNotFoundError(PRODUCTS, product_id)
        # a product may only move into a group that exists
        if "groupId" in product_data and tx.get(PRODUCT_GROUPS, product_data["groupId"]) is None:
            raise DocumentNotFoundError(PRODUCT_GROUPS, product_data["groupId"])
        tx.update(PRODUCTS, product_id, {**product_data, "lastUpdated": now_iso()})

    try:
        store.run_transaction(_body)
    except DocumentNotFoundError as exc:
        if exc.collection == PRODUCT_GROUPS:
            return OperationResult.fail("Product group not found", "not_found")
        return OperationResult.fail("Product not found", "not_found")
    except StoreError as exc:
        logger.error("Error updating product %s: %s", product_id, exc)
        return OperationResult.fail(str(exc), "store_error")
    return OperationResult.ok(id=product_id)


def delete_product(store: DocumentStore, identity: Optional[dict], product_id: str) -> OperationResult:
    """Hard delete. History entries stay behind for the audit trail."""
    if not is_admin(identity):
        return _denied("delete products")

    try:
        if store.get_document(PRODUCTS, product_id) is None:
            return OperationResult.fail("Product not found", "not_found")
        store.delete_document(PRODUCTS, product_id)
    except StoreError as exc:
        logger.error("Error deleting product %s: %s", product_id, exc)
        return OperationResult.fail(str(exc), "store_error")
    logger.info("product %s deleted by %s", product_id, identity.get("id"))
    return OperationResult.ok(id=product_id)
