# Overview: Document store backed by the application database (Flask-SQLAlchemy).

"""
SQL-backed document store.

Every document is one row of the `documents` table: (collection, doc_id,
JSON body, version). Filtering and ordering are evaluated with the shared
query primitives after loading a collection's rows, so results match the
in-memory backend exactly.

Transactions:
- Reads go straight to the database and remember the version they saw.
- Writes are buffered on the transaction handle and applied at commit.
- Each applied write is a conditional UPDATE ... WHERE version = <seen>;
  a zero rowcount means another writer committed first, the session is
  rolled back and the whole body is re-run (bounded, see concurrency.py).
- Documents that were read but not written are re-checked at commit.

Listeners are re-evaluated in the committing thread after commit.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import CompositeIndex, Document
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


def _documents():
    return Document.__table__


def _match(collection: str, doc_id: str):
    table = _documents()
    return (table.c.collection == collection) & (table.c.doc_id == doc_id)


class _SqlTransaction(Transaction):
    def __init__(self, store: "SqlDocumentStore"):
        self._store = store
        self._read_versions: dict[tuple[str, str], Optional[int]] = {}
        self._read_data: dict[tuple[str, str], dict] = {}
        # (op, payload) per document, in first-write order
        self._writes: dict[tuple[str, str], tuple[str, Optional[dict]]] = {}

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        if self._writes:
            raise StoreError("Transactions require all reads to be executed before all writes")
        key = (collection, doc_id)
        loaded = self._store._load(collection, doc_id)
        if loaded is None:
            self._read_versions[key] = None
            return None
        data, version = loaded
        self._read_versions[key] = version
        self._read_data[key] = data
        return {"id": doc_id, **data}

    def set(self, collection: str, doc_id: str, fields: dict) -> None:
        self._writes[(collection, doc_id)] = ("set", clean_fields(fields))

    def update(self, collection: str, doc_id: str, partial: dict) -> None:
        key = (collection, doc_id)
        partial = clean_fields(partial)
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
        """Apply buffered writes inside the current session; returns touched collections."""
        for key, expected in self._read_versions.items():
            if key in self._writes:
                continue
            current = self._store._load(*key)
            current_version = current[1] if current is not None else None
            if current_version != expected:
                raise TransactionConflictError(f"{key[0]}/{key[1]} changed during transaction")

        for (collection, doc_id), (op, payload) in self._writes.items():
            key = (collection, doc_id)
            expected = self._read_versions.get(key, _MISSING)

            if op == "update":
                if expected is _MISSING:
                    current = self._store._load(collection, doc_id)
                    if current is None:
                        raise DocumentNotFoundError(collection, doc_id)
                    base, expected = current
                elif expected is None:
                    raise DocumentNotFoundError(collection, doc_id)
                else:
                    base = self._read_data[key]
                self._conditional_update(collection, doc_id, {**base, **payload}, expected)

            elif op == "set":
                if expected is _MISSING:
                    self._store._upsert(collection, doc_id, payload)
                elif expected is None:
                    # IntegrityError here means someone created it first: retried as a conflict
                    self._store._insert(collection, doc_id, payload)
                else:
                    self._conditional_update(collection, doc_id, payload, expected)

            else:
                statement = _documents().delete().where(_match(collection, doc_id))
                if expected not in (_MISSING, None):
                    statement = statement.where(_documents().c.version == expected)
                result = db.session.execute(statement)
                if expected not in (_MISSING, None) and result.rowcount == 0:
                    raise TransactionConflictError(f"{collection}/{doc_id} changed during transaction")

        db.session.commit()
        return {collection for collection, _ in self._writes}

    def _conditional_update(self, collection: str, doc_id: str, data: dict, expected: int) -> None:
        table = _documents()
        result = db.session.execute(
            table.update()
            .where(_match(collection, doc_id))
            .where(table.c.version == expected)
            .values(data=data, version=expected + 1)
        )
        if result.rowcount == 0:
            raise TransactionConflictError(f"{collection}/{doc_id} changed during transaction")


class SqlDocumentStore(DocumentStore):
    """DocumentStore over the `documents` table of the application database."""

    def __init__(self, *, max_attempts: int | None = None, backoff_base: float | None = None):
        if max_attempts is not None:
            self.default_max_attempts = max_attempts
        if backoff_base is not None:
            self.backoff_base = backoff_base
        self._listeners = ListenerRegistry()

    # ------------------------------------------------------------------
    # Row helpers (caller owns commit/rollback)
    # ------------------------------------------------------------------

    def _load(self, collection: str, doc_id: str) -> Optional[tuple[dict, int]]:
        table = _documents()
        row = db.session.execute(
            select(table.c.data, table.c.version).where(_match(collection, doc_id))
        ).first()
        if row is None:
            return None
        return dict(row.data or {}), row.version

    def _insert(self, collection: str, doc_id: str, data: dict) -> None:
        db.session.execute(
            _documents().insert().values(collection=collection, doc_id=doc_id, data=data, version=1)
        )

    def _upsert(self, collection: str, doc_id: str, data: dict) -> None:
        table = _documents()
        result = db.session.execute(
            table.update()
            .where(_match(collection, doc_id))
            .values(data=data, version=table.c.version + 1)
        )
        if result.rowcount == 0:
            self._insert(collection, doc_id, data)

    def _write(self, collections: Iterable[str], op: Callable[[], Any]) -> Any:
        try:
            result = op()
            db.session.commit()
        except StoreError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"Database write failed: {exc}") from exc
        self._listeners.notify(collections)
        return result

    def _rows(self, collection: str) -> list[dict]:
        table = _documents()
        rows = db.session.execute(
            select(table.c.doc_id, table.c.data).where(table.c.collection == collection)
        ).all()
        return [{"id": row.doc_id, **(row.data or {})} for row in rows]

    def _indexes(self) -> set[tuple[str, tuple[str, ...]]]:
        return {(index.collection, index.field_tuple()) for index in CompositeIndex.query.all()}

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    def get_document(self, collection: str, doc_id: str) -> Optional[dict]:
        try:
            loaded = self._load(collection, doc_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"Database read failed: {exc}") from exc
        if loaded is None:
            return None
        return {"id": doc_id, **loaded[0]}

    def set_document(self, collection: str, doc_id: str, fields: dict) -> None:
        data = clean_fields(fields)
        self._write([collection], lambda: self._upsert(collection, doc_id, data))

    def add_document(self, collection: str, fields: dict) -> str:
        doc_id = generate_document_id()
        data = clean_fields(fields)
        self._write([collection], lambda: self._insert(collection, doc_id, data))
        return doc_id

    def update_document(self, collection: str, doc_id: str, partial: dict) -> None:
        partial = clean_fields(partial)

        def _op():
            current = self._load(collection, doc_id)
            if current is None:
                raise DocumentNotFoundError(collection, doc_id)
            data, _version = current
            table = _documents()
            db.session.execute(
                table.update()
                .where(_match(collection, doc_id))
                .values(data={**data, **partial}, version=table.c.version + 1)
            )

        self._write([collection], _op)

    def delete_document(self, collection: str, doc_id: str) -> None:
        self._write(
            [collection],
            lambda: db.session.execute(_documents().delete().where(_match(collection, doc_id))),
        )

    def query_collection(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[OrderBy] = None,
    ) -> list[dict]:
        filters = tuple(filters)
        needed = required_index(filters, order_by)
        try:
            if needed is not None and (collection, needed) not in self._indexes():
                raise MissingIndexError(collection, needed)
            rows = self._rows(collection)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"Database read failed: {exc}") from exc
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
            tx = _SqlTransaction(self)
            try:
                result = body(tx)
                touched = tx.commit()
            except Exception:
                db.session.rollback()
                raise
            self._listeners.notify(touched)
            return result

        try:
            return run_with_retry(_attempt, attempts=attempts, backoff_base=self.backoff_base)
        except (StoreError, IntegrityError):
            raise
        except SQLAlchemyError as exc:
            raise StoreError(f"Transaction failed: {exc}") from exc

    def create_index(self, collection: str, fields: Iterable[str]) -> None:
        normalized = ",".join(normalize_index(fields))
        existing = CompositeIndex.query.filter_by(collection=collection, fields=normalized).first()
        if existing is not None:
            return
        db.session.add(CompositeIndex(collection=collection, fields=normalized))
        db.session.commit()
        logger.info("created composite index %s(%s)", collection, normalized)

    def list_indexes(self) -> list[tuple[str, tuple[str, ...]]]:
        return sorted(self._indexes())

    def active_listener_count(self, collection: Optional[str] = None) -> int:
        return self._listeners.active_count(collection)
