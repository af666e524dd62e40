# Overview: In-process document store with the same contract as the SQL backend.

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Iterable, Optional

from .base import (
    DocumentNotFoundError,
    DocumentStore,
    MissingIndexError,
    StoreError,
    Subscription,
    Transaction,
    TransactionConflictError,
    clean_fields,
    generate_document_id,
)
from .concurrency import run_with_retry
from .listeners import ListenerRegistry
from .query import Filter, OrderBy, apply_query, normalize_index, required_index

logger = logging.getLogger(__name__)

_MISSING = object()


class _MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryDocumentStore"):
        self._store = store
        self._read_versions: dict[tuple[str, str], Optional[int]] = {}
        self._writes: dict[tuple[str, str], tuple[str, Optional[dict]]] = {}

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        if self._writes:
            raise StoreError("Transactions require all reads to be executed before all writes")
        with self._store._lock:
            entry = self._store._docs.get(collection, {}).get(doc_id)
            if entry is None:
                self._read_versions[(collection, doc_id)] = None
                return None
            data, version = entry
            self._read_versions[(collection, doc_id)] = version
            return {"id": doc_id, **copy.deepcopy(data)}

    def set(self, collection: str, doc_id: str, fields: dict) -> None:
        self._writes[(collection, doc_id)] = ("set", copy.deepcopy(clean_fields(fields)))

    def update(self, collection: str, doc_id: str, partial: dict) -> None:
        key = (collection, doc_id)
        partial = copy.deepcopy(clean_fields(partial))
        previous = self._writes.get(key)
        if previous is None:
            self._writes[key] = ("update", partial)
        elif previous[0] == "delete":
            raise DocumentNotFoundError(collection, doc_id)
        else:
            self._writes[key] = (previous[0], {**previous[1], **partial})

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes[(collection, doc_id)] = ("delete", None)

    def new_id(self) -> str:
        return generate_document_id()

    def commit(self) -> set[str]:
        store = self._store
        with store._lock:
            for (collection, doc_id), expected in self._read_versions.items():
                entry = store._docs.get(collection, {}).get(doc_id)
                current = entry[1] if entry is not None else None
                if current != expected:
                    raise TransactionConflictError(f"{collection}/{doc_id} changed during transaction")

            # validate every write before applying any of them
            for (collection, doc_id), (op, _payload) in self._writes.items():
                if op == "update" and store._docs.get(collection, {}).get(doc_id) is None:
                    raise DocumentNotFoundError(collection, doc_id)

            for (collection, doc_id), (op, payload) in self._writes.items():
                if op == "delete":
                    store._docs.get(collection, {}).pop(doc_id, None)
                elif op == "set":
                    store._put(collection, doc_id, payload)
                else:
                    data, _version = store._docs[collection][doc_id]
                    store._put(collection, doc_id, {**data, **payload})

        return {collection for collection, _ in self._writes}


class MemoryDocumentStore(DocumentStore):
    """
    Dict-backed DocumentStore guarded by a re-entrant lock.

    Useful for tests and single-process deployments. Composite indexes are
    enforced the same way the SQL backend enforces them.
    """

    def __init__(self, *, max_attempts: int | None = None, backoff_base: float | None = None):
        if max_attempts is not None:
            self.default_max_attempts = max_attempts
        if backoff_base is not None:
            self.backoff_base = backoff_base
        self._lock = threading.RLock()
        self._docs: dict[str, dict[str, tuple[dict, int]]] = {}
        self._indexes: set[tuple[str, tuple[str, ...]]] = set()
        self._listeners = ListenerRegistry()

    def _put(self, collection: str, doc_id: str, data: dict) -> None:
        bucket = self._docs.setdefault(collection, {})
        previous = bucket.get(doc_id)
        version = previous[1] + 1 if previous is not None else 1
        bucket[doc_id] = (data, version)

    def get_document(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            entry = self._docs.get(collection, {}).get(doc_id)
            if entry is None:
                return None
            return {"id": doc_id, **copy.deepcopy(entry[0])}

    def set_document(self, collection: str, doc_id: str, fields: dict) -> None:
        with self._lock:
            self._put(collection, doc_id, copy.deepcopy(clean_fields(fields)))
        self._listeners.notify([collection])

    def add_document(self, collection: str, fields: dict) -> str:
        doc_id = generate_document_id()
        self.set_document(collection, doc_id, fields)
        return doc_id

    def update_document(self, collection: str, doc_id: str, partial: dict) -> None:
        with self._lock:
            entry = self._docs.get(collection, {}).get(doc_id)
            if entry is None:
                raise DocumentNotFoundError(collection, doc_id)
            self._put(collection, doc_id, {**entry[0], **copy.deepcopy(clean_fields(partial))})
        self._listeners.notify([collection])

    def delete_document(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._docs.get(collection, {}).pop(doc_id, None)
        self._listeners.notify([collection])

    def query_collection(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[OrderBy] = None,
    ) -> list[dict]:
        filters = tuple(filters)
        needed = required_index(filters, order_by)
        with self._lock:
            if needed is not None and (collection, needed) not in self._indexes:
                raise MissingIndexError(collection, needed)
            rows = [
                {"id": doc_id, **copy.deepcopy(data)}
                for doc_id, (data, _version) in self._docs.get(collection, {}).items()
            ]
        return apply_query(rows, filters, order_by)

    def subscribe(
        self,
        collection: str,
        callback: Callable[[list[dict]], None],
        filters: Iterable[Filter] = (),
        order_by: Optional[OrderBy] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Subscription:
        filters = tuple(filters)
        return self._listeners.register(
            collection,
            lambda: self.query_collection(collection, filters, order_by),
            callback,
            on_error,
        )

    def subscribe_document(
        self,
        collection: str,
        doc_id: str,
        callback: Callable[[Optional[dict]], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Subscription:
        return self._listeners.register(
            collection,
            lambda: self.get_document(collection, doc_id),
            callback,
            on_error,
        )

    def run_transaction(self, body: Callable[[Transaction], Any], max_attempts: Optional[int] = None) -> Any:
        attempts = max_attempts or self.default_max_attempts

        def _attempt():
            tx = _MemoryTransaction(self)
            result = body(tx)
            touched = tx.commit()
            self._listeners.notify(touched)
            return result

        return run_with_retry(
            _attempt,
            attempts=attempts,
            backoff_base=self.backoff_base,
            retry_on=(TransactionConflictError,),
        )

    def create_index(self, collection: str, fields: Iterable[str]) -> None:
        with self._lock:
            self._indexes.add((collection, normalize_index(fields)))

    def list_indexes(self) -> list[tuple[str, tuple[str, ...]]]:
        with self._lock:
            return sorted(self._indexes)

    def active_listener_count(self, collection: Optional[str] = None) -> int:
        return self._listeners.active_count(collection)
