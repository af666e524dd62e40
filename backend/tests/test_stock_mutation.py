"""
Stock mutation tests.

Verifies:
- Every stock change writes exactly one history entry with the right deltas
- Only admins may change stock
- Concurrent writers are re-run, never overwritten blindly
- History for a product chains: entry[i].newStock == entry[i+1].previousStock
"""

import threading

import pytest

from stockapp.services import stock_service
from stockapp.services.stock_service import (
    PRODUCTS,
    STOCK_HISTORY,
    audit_product_history,
    find_history_breaks,
    get_stock_history_by_product,
    update_product_stock,
)
from stockapp.store import Filter, MemoryDocumentStore
from stockapp.time_utils import now_iso


def _history(store, product_id):
    return store.query_collection(STOCK_HISTORY, [Filter("productId", product_id)])


class TestStockUpdate:

    def test_sequence_of_updates_records_history(self, any_store, admin_identity, seed_product):
        product_id = seed_product(any_store, stock=50, cartons=5)

        first = update_product_stock(any_store, admin_identity, product_id, 40, 4, "sold 10")
        assert first.success
        entry = first.data["history"]
        assert entry["previousStock"] == 50
        assert entry["newStock"] == 40
        assert entry["changeAmount"] == -10
        assert entry["previousCartons"] == 5
        assert entry["newCartons"] == 4
        assert entry["userId"] == "admin-uid"
        assert entry["changeReason"] == "sold 10"
        assert entry["productName"] == "Basmati Rice 5kg"

        second = update_product_stock(any_store, admin_identity, product_id, 70, 7, "restock")
        assert second.success
        assert second.data["history"]["previousStock"] == 40
        assert second.data["history"]["changeAmount"] == 30

        product = any_store.get_document(PRODUCTS, product_id)
        assert product["stock"] == 70
        assert product["cartons"] == 7
        assert product["lastUpdated"] == second.data["history"]["timestamp"]

        history = _history(any_store, product_id)
        assert len(history) == 2
        assert find_history_breaks(history) == []

    def test_missing_product_writes_nothing(self, any_store, admin_identity):
        result = update_product_stock(any_store, admin_identity, "no-such-product", 10, 1)

        assert not result.success
        assert result.code == "not_found"
        assert result.error == "Product not found"
        assert any_store.query_collection(STOCK_HISTORY) == []

    def test_user_role_is_denied(self, any_store, user_identity, seed_product):
        product_id = seed_product(any_store)

        result = update_product_stock(any_store, user_identity, product_id, 10, 1)

        assert result.code == "permission_denied"
        assert any_store.get_document(PRODUCTS, product_id)["stock"] == 50
        assert _history(any_store, product_id) == []

    def test_signed_out_caller_is_denied(self, memory_store, seed_product):
        product_id = seed_product(memory_store)
        assert update_product_stock(memory_store, None, product_id, 10, 1).code == "permission_denied"

    @pytest.mark.parametrize("stock,cartons", [(1.5, 1), ("40", 1), (True, 1), (10, None)])
    def test_non_integer_counters_are_rejected(self, memory_store, admin_identity, seed_product, stock, cartons):
        product_id = seed_product(memory_store)

        result = update_product_stock(memory_store, admin_identity, product_id, stock, cartons)

        assert result.code == "validation"
        assert memory_store.query_collection(STOCK_HISTORY) == []

    def test_negative_stock_is_accepted(self, memory_store, admin_identity, seed_product):
        product_id = seed_product(memory_store, stock=3)

        result = update_product_stock(memory_store, admin_identity, product_id, -2, 0, "miscount")

        assert result.success
        assert result.data["history"]["changeAmount"] == -5


class TestConcurrentWriters:

    def test_conflicting_write_reruns_the_transaction(self, any_store, admin_identity, seed_product, monkeypatch):
        product_id = seed_product(any_store, stock=50)
        calls = {"count": 0}

        def interfering_now_iso():
            calls["count"] += 1
            if calls["count"] == 1:
                # another writer commits between our read and our commit
                any_store.update_document(PRODUCTS, product_id, {"stock": 999})
            return now_iso()

        monkeypatch.setattr(stock_service, "now_iso", interfering_now_iso)

        result = update_product_stock(any_store, admin_identity, product_id, 40, 4)

        assert result.success
        assert calls["count"] == 2
        assert result.data["history"]["previousStock"] == 999
        assert result.data["history"]["changeAmount"] == 40 - 999
        assert any_store.get_document(PRODUCTS, product_id)["stock"] == 40
        assert len(_history(any_store, product_id)) == 1

    def test_exhausted_retries_report_conflict(self, any_store, admin_identity, seed_product, monkeypatch):
        product_id = seed_product(any_store, stock=50)

        def always_interfering_now_iso():
            any_store.update_document(PRODUCTS, product_id, {"stock": 999})
            return now_iso()

        monkeypatch.setattr(stock_service, "now_iso", always_interfering_now_iso)

        result = update_product_stock(any_store, admin_identity, product_id, 40, 4, max_attempts=2)

        assert not result.success
        assert result.code == "conflict"
        assert any_store.get_document(PRODUCTS, product_id)["stock"] == 999
        assert _history(any_store, product_id) == []

    def test_parallel_updates_keep_history_consistent(self, admin_identity, seed_product):
        store = MemoryDocumentStore(max_attempts=50, backoff_base=0.0005)
        product_id = seed_product(store, stock=100, cartons=10)
        results = []
        results_lock = threading.Lock()

        def worker(n):
            for i in range(5):
                result = update_product_stock(store, admin_identity, product_id, n * 10 + i, n, f"worker {n}")
                with results_lock:
                    results.append(result)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        successes = [r for r in results if r.success]
        history = _history(store, product_id)
        product = store.get_document(PRODUCTS, product_id)

        assert len(history) == len(successes)
        assert find_history_breaks(history) == []
        assert product["stock"] == 100 + sum(entry["changeAmount"] for entry in history)

        newest = max(history, key=lambda entry: entry["timestamp"])
        assert newest["newStock"] == product["stock"]


class TestHistoryReads:

    def test_history_is_newest_first(self, any_store, admin_identity, seed_product):
        product_id = seed_product(any_store, stock=0)
        for value in (5, 9, 2):
            assert update_product_stock(any_store, admin_identity, product_id, value, 0)

        result = get_stock_history_by_product(any_store, product_id)

        assert result.success
        assert [entry["newStock"] for entry in result.data["history"]] == [2, 9, 5]

    def test_history_is_scoped_to_the_product(self, memory_store, admin_identity, seed_product):
        first = seed_product(memory_store, product_id="p-a")
        second = seed_product(memory_store, product_id="p-b")
        update_product_stock(memory_store, admin_identity, first, 1, 0)
        update_product_stock(memory_store, admin_identity, second, 2, 0)

        history = get_stock_history_by_product(memory_store, first).data["history"]

        assert [entry["productId"] for entry in history] == ["p-a"]

    def test_audit_reports_consistent_history(self, memory_store, admin_identity, seed_product):
        product_id = seed_product(memory_store, stock=10)
        update_product_stock(memory_store, admin_identity, product_id, 12, 1)
        update_product_stock(memory_store, admin_identity, product_id, 8, 1)

        report = audit_product_history(memory_store, product_id)

        assert report.success
        assert report.data["entries"] == 2
        assert report.data["consistent"] is True

    def test_audit_detects_out_of_band_stock_edit(self, memory_store, admin_identity, seed_product):
        product_id = seed_product(memory_store, stock=10)
        update_product_stock(memory_store, admin_identity, product_id, 12, 1)
        memory_store.update_document(PRODUCTS, product_id, {"stock": 30})

        report = audit_product_history(memory_store, product_id)

        assert report.data["matchesCurrentStock"] is False
        assert report.data["consistent"] is False

    def test_find_history_breaks_reports_gaps(self):
        history = [
            {"id": "a", "timestamp": "2026-01-01T00:00:00.000001Z", "previousStock": 0, "newStock": 5},
            {"id": "b", "timestamp": "2026-01-01T00:00:00.000002Z", "previousStock": 7, "newStock": 3},
        ]

        breaks = find_history_breaks(history)

        assert len(breaks) == 1
        assert breaks[0]["previous"]["id"] == "a"
        assert breaks[0]["next"]["id"] == "b"
