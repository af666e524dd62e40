"""
Catalog write and read tests (product groups and products).
"""

from stockapp.services.catalog_service import (
    add_product,
    add_product_group,
    delete_product,
    get_product_by_id,
    get_product_groups,
    get_products_by_group,
    get_total_products,
    update_product,
)
from stockapp.services.stock_service import PRODUCTS


def test_group_and_product_lifecycle(any_store, admin_identity):
    group = add_product_group(any_store, admin_identity, {"name": "  Pulses ", "description": "Dry lentils"})
    assert group.success
    group_id = group.data["id"]
    assert [g["name"] for g in get_product_groups(any_store)] == ["Pulses"]

    product = add_product(any_store, admin_identity, {"name": "Toor Dal 1kg", "groupId": group_id, "mrp": 180})
    assert product.success
    product_id = product.data["id"]

    stored = get_product_by_id(any_store, product_id).data["product"]
    assert stored["stock"] == 0
    assert stored["cartons"] == 0
    assert stored["createdAt"] == stored["lastUpdated"]
    assert [p["id"] for p in get_products_by_group(any_store, group_id).data["products"]] == [product_id]
    assert get_total_products(any_store) == 1

    assert update_product(any_store, admin_identity, product_id, {"mrp": 190}).success
    updated = any_store.get_document(PRODUCTS, product_id)
    assert updated["mrp"] == 190
    assert updated["lastUpdated"] > stored["lastUpdated"]

    assert delete_product(any_store, admin_identity, product_id).success
    assert get_product_by_id(any_store, product_id).code == "not_found"
    assert get_total_products(any_store) == 0


def test_writes_require_admin(memory_store, user_identity, seed_product):
    product_id = seed_product(memory_store)

    assert add_product_group(memory_store, user_identity, {"name": "X"}).code == "permission_denied"
    assert add_product(memory_store, user_identity, {"name": "Y", "groupId": "grp-1"}).code == "permission_denied"
    assert update_product(memory_store, user_identity, product_id, {"mrp": 1}).code == "permission_denied"
    assert delete_product(memory_store, user_identity, product_id).code == "permission_denied"
    assert memory_store.get_document(PRODUCTS, product_id)["mrp"] == 499


def test_product_needs_existing_group(memory_store, admin_identity):
    result = add_product(memory_store, admin_identity, {"name": "Orphan", "groupId": "missing"})

    assert result.code == "not_found"
    assert get_total_products(memory_store) == 0


def test_product_validation(memory_store, admin_identity, seed_product):
    seed_product(memory_store)

    assert add_product(memory_store, admin_identity, {"groupId": "grp-1"}).code == "validation"
    assert add_product(memory_store, admin_identity, {"name": "No group"}).code == "validation"
    assert add_product(memory_store, admin_identity, {"name": "X", "groupId": "grp-1", "colour": "red"}).code == "validation"
    assert add_product_group(memory_store, admin_identity, {"name": "   "}).code == "validation"


def test_update_cannot_touch_stock(memory_store, admin_identity, seed_product):
    product_id = seed_product(memory_store, stock=50)

    result = update_product(memory_store, admin_identity, product_id, {"stock": 0})

    assert result.code == "validation"
    assert memory_store.get_document(PRODUCTS, product_id)["stock"] == 50


def test_update_and_delete_missing_product(memory_store, admin_identity):
    assert update_product(memory_store, admin_identity, "ghost", {"mrp": 1}).code == "not_found"
    assert delete_product(memory_store, admin_identity, "ghost").code == "not_found"


def test_non_string_names_are_validation_errors(memory_store, admin_identity, seed_product):
    product_id = seed_product(memory_store)

    assert add_product_group(memory_store, admin_identity, {"name": 5}).code == "validation"
    assert add_product(memory_store, admin_identity, {"name": 5, "groupId": "grp-1"}).code == "validation"
    assert add_product(memory_store, admin_identity, {"name": "X", "groupId": 7}).code == "validation"
    assert update_product(memory_store, admin_identity, product_id, {"name": ["Rice"]}).code == "validation"
    assert memory_store.get_document(PRODUCTS, product_id)["name"] == "Basmati Rice 5kg"


def test_update_moves_product_only_into_existing_group(any_store, admin_identity, seed_product):
    product_id = seed_product(any_store)
    seed_product(any_store, group_id="grp-2", product_id="prod-2")

    missing = update_product(any_store, admin_identity, product_id, {"groupId": "no-such-group"})
    assert missing.code == "not_found"
    assert missing.error == "Product group not found"
    assert any_store.get_document(PRODUCTS, product_id)["groupId"] == "grp-1"

    assert update_product(any_store, admin_identity, product_id, {"groupId": "grp-2"}).success
    assert any_store.get_document(PRODUCTS, product_id)["groupId"] == "grp-2"
