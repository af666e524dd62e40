"""
Live subscription tests.

Verifies:
- Callbacks receive a snapshot immediately and after every committed write
- Cancelling is idempotent and stops deliveries
- Stock history without its composite index falls back to an unordered
  query, sorted so the sequence matches the indexed query exactly
"""

import logging

import pytest

from stockapp.services import stock_service
from stockapp.services.catalog_service import PRODUCT_GROUPS, add_product_group
from stockapp.services.live_service import (
    subscribe_to_product_by_id,
    subscribe_to_product_groups,
    subscribe_to_products,
    subscribe_to_stock_history,
)
from stockapp.services.stock_service import (
    HISTORY_ORDER,
    PRODUCTS,
    STOCK_HISTORY,
    history_filters,
    update_product_stock,
)
from stockapp.store import StoreError


@pytest.fixture(autouse=True)
def fresh_index_warnings(monkeypatch):
    monkeypatch.setattr(stock_service, "_warned_indexes", set())


class TestSnapshots:

    def test_groups_snapshot_then_updates(self, any_store, admin_identity):
        snapshots = []
        handle = subscribe_to_product_groups(any_store, snapshots.append)

        add_product_group(any_store, admin_identity, {"name": "Spices"})

        assert snapshots[0] == []
        assert [g["name"] for g in snapshots[-1]] == ["Spices"]
        handle.cancel()

    def test_products_filtered_by_group(self, memory_store, seed_product):
        seed_product(memory_store, group_id="g1", product_id="p1")
        seed_product(memory_store, group_id="g2", product_id="p2")
        snapshots = []

        handle = subscribe_to_products(memory_store, "g1", snapshots.append)

        assert [p["id"] for p in snapshots[-1]] == ["p1"]
        handle.cancel()

    def test_product_by_id_reports_deletion(self, memory_store, seed_product, caplog):
        product_id = seed_product(memory_store)
        snapshots = []
        handle = subscribe_to_product_by_id(memory_store, product_id, snapshots.append)

        with caplog.at_level(logging.WARNING):
            memory_store.delete_document(PRODUCTS, product_id)

        assert snapshots[0]["id"] == product_id
        assert snapshots[-1] is None
        assert "does not exist" in caplog.text
        handle.cancel()


class TestCancellation:

    def test_cancel_is_idempotent_and_stops_delivery(self, memory_store, admin_identity):
        snapshots = []
        handle = subscribe_to_product_groups(memory_store, snapshots.append)

        handle.cancel()
        handle.cancel()
        handle()
        add_product_group(memory_store, admin_identity, {"name": "Oils"})

        assert snapshots == [[]]
        assert not handle.active
        assert memory_store.active_listener_count() == 0

    def test_cancelled_history_fallback_releases_listener(self, memory_store, seed_product):
        product_id = seed_product(memory_store)
        handle = subscribe_to_stock_history(memory_store, product_id, lambda history: None)
        assert memory_store.active_listener_count(STOCK_HISTORY) == 1

        handle.cancel()
        handle.cancel()

        assert memory_store.active_listener_count(STOCK_HISTORY) == 0


class TestCallbackIsolation:

    def test_failing_callback_does_not_undo_committed_write(self, any_store, admin_identity, seed_product, caplog):
        product_id = seed_product(any_store, stock=50)
        calls = []

        def broken(snapshot):
            calls.append(snapshot)
            if len(calls) > 1:
                raise ValueError("subscriber bug")

        others = []
        broken_handle = subscribe_to_products(any_store, "grp-1", broken)
        other_handle = subscribe_to_products(any_store, "grp-1", others.append)

        with caplog.at_level(logging.ERROR):
            result = update_product_stock(any_store, admin_identity, product_id, 40, 4, "sold")

        assert result.success
        assert any_store.get_document(PRODUCTS, product_id)["stock"] == 40
        assert [p["stock"] for p in others[-1]] == [40]
        assert len(others) >= 2
        assert "listener callback on products failed" in caplog.text

        update_product_stock(any_store, admin_identity, product_id, 30, 3)
        assert calls[-1][0]["stock"] == 30
        broken_handle.cancel()
        other_handle.cancel()


class TestStockHistorySubscription:

    def test_indexed_subscription_is_newest_first(self, any_store, admin_identity, seed_product):
        any_store.create_index(STOCK_HISTORY, ["productId", "timestamp"])
        product_id = seed_product(any_store, stock=0)
        snapshots = []
        handle = subscribe_to_stock_history(any_store, product_id, snapshots.append)

        for value in (3, 6, 1):
            update_product_stock(any_store, admin_identity, product_id, value, 0)

        assert snapshots[0] == []
        assert [entry["newStock"] for entry in snapshots[-1]] == [1, 6, 3]
        handle.cancel()

    def test_missing_index_falls_back_with_identical_order(self, any_store, admin_identity, seed_product, caplog):
        product_id = seed_product(any_store, stock=0)
        snapshots = []

        with caplog.at_level(logging.WARNING):
            handle = subscribe_to_stock_history(any_store, product_id, snapshots.append)
            for value in (4, 8, 2, 7):
                update_product_stock(any_store, admin_identity, product_id, value, 0)

        assert "flask store create-index stockHistory productId timestamp" in caplog.text
        assert caplog.text.count("Missing index") == 1

        any_store.create_index(STOCK_HISTORY, ["productId", "timestamp"])
        ordered = any_store.query_collection(STOCK_HISTORY, history_filters(product_id), HISTORY_ORDER)

        assert [entry["id"] for entry in snapshots[-1]] == [entry["id"] for entry in ordered]
        assert [entry["newStock"] for entry in snapshots[-1]] == [7, 2, 8, 4]
        handle.cancel()

    def test_fallback_only_sees_its_product(self, memory_store, admin_identity, seed_product):
        first = seed_product(memory_store, product_id="p-a")
        second = seed_product(memory_store, product_id="p-b")
        snapshots = []
        handle = subscribe_to_stock_history(memory_store, first, snapshots.append)

        update_product_stock(memory_store, admin_identity, second, 11, 0)
        update_product_stock(memory_store, admin_identity, first, 12, 0)

        assert [entry["productId"] for entry in snapshots[-1]] == ["p-a"]
        handle.cancel()

    def test_store_failure_delivers_empty_snapshot(self, memory_store, seed_product, monkeypatch):
        product_id = seed_product(memory_store)
        memory_store.create_index(STOCK_HISTORY, ["productId", "timestamp"])

        def broken_query(*args, **kwargs):
            raise StoreError("backend unavailable")

        monkeypatch.setattr(memory_store, "query_collection", broken_query)
        snapshots = []

        handle = subscribe_to_stock_history(memory_store, product_id, snapshots.append)

        assert snapshots == [[]]
        handle.cancel()


def test_group_documents_written_directly_are_delivered(memory_store):
    snapshots = []
    handle = subscribe_to_product_groups(memory_store, snapshots.append)

    memory_store.set_document(PRODUCT_GROUPS, "g-direct", {"name": "Direct"})

    assert snapshots[-1][0]["id"] == "g-direct"
    handle.cancel()
