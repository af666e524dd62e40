# Overview: Store/auth wiring for the Flask app; services receive these explicitly.

from flask import current_app

from .auth_provider import SqlAuthProvider
from .base import (
    AuthError,
    AuthEvent,
    AuthProvider,
    DocumentNotFoundError,
    DocumentStore,
    EmailAlreadyInUseError,
    InvalidCredentialsError,
    MissingIndexError,
    PermissionDeniedError,
    SessionExpiredError,
    StoreError,
    Subscription,
    Transaction,
    TransactionConflictError,
    WeakPasswordError,
)
from .memory_store import MemoryDocumentStore
from .query import ASCENDING, DESCENDING, Filter, OrderBy
from .sql_store import SqlDocumentStore

STORE_BACKENDS = {
    "sql": SqlDocumentStore,
    "memory": MemoryDocumentStore,
}


def init_store(app) -> DocumentStore:
    """Build the configured document store and attach it to the app."""
    backend = app.config.get("DOCUMENT_STORE_BACKEND", "sql")
    try:
        store_cls = STORE_BACKENDS[backend]
    except KeyError:
        raise ValueError(f"Unknown DOCUMENT_STORE_BACKEND: {backend!r}") from None

    store = store_cls(
        max_attempts=app.config.get("STORE_TRANSACTION_ATTEMPTS"),
        backoff_base=app.config.get("STORE_TRANSACTION_BACKOFF"),
    )
    app.extensions["document_store"] = store
    return store


def get_store() -> DocumentStore:
    return current_app.extensions["document_store"]


def new_auth_provider() -> SqlAuthProvider:
    """A fresh provider with no signed-in session."""
    return SqlAuthProvider(bcrypt_rounds=current_app.config.get("BCRYPT_ROUNDS", 12))


__all__ = [
    "ASCENDING", "DESCENDING", "Filter", "OrderBy",
    "AuthError", "AuthEvent", "AuthProvider", "DocumentNotFoundError", "DocumentStore",
    "EmailAlreadyInUseError", "InvalidCredentialsError", "MissingIndexError",
    "PermissionDeniedError", "SessionExpiredError", "StoreError", "Subscription",
    "Transaction", "TransactionConflictError", "WeakPasswordError",
    "MemoryDocumentStore", "SqlDocumentStore", "SqlAuthProvider",
    "init_store", "get_store", "new_auth_provider",
]
