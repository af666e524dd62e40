# Overview: Contracts for the document store and auth provider the services depend on.

"""
Document store and auth provider contracts.

Everything the services know about persistence goes through these
interfaces. Two store backends implement them (sql_store, memory_store);
both must honor the same guarantees:

- Documents are plain dicts. Reads return a copy with the id under "id".
- run_transaction() re-runs the body on conflict, at most max_attempts
  times, and applies all of an attempt's writes or none of them.
- subscribe() delivers a full snapshot immediately and after every
  committed write to the collection, until the handle is cancelled.
"""

from __future__ import annotations

import secrets
import string
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from .query import Filter, OrderBy


# =============================================================================
# ERRORS
# =============================================================================


class StoreError(Exception):
    """Base class for failures reported by the document store."""


class DocumentNotFoundError(StoreError):
    """Referenced document does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class MissingIndexError(StoreError):
    """Ordered query over a filter has no composite index to serve it."""

    def __init__(self, collection: str, fields: tuple[str, ...]):
        self.collection = collection
        self.fields = fields
        command = f"flask store create-index {collection} {' '.join(fields)}"
        super().__init__(
            f"The query requires a composite index on {collection}({', '.join(fields)}). "
            f"Create it with: {command}"
        )
        self.create_command = command


class TransactionConflictError(StoreError):
    """A transaction lost to a concurrent writer (after retries, when raised to callers)."""


class PermissionDeniedError(StoreError):
    """Caller is not allowed to perform the operation."""


class AuthError(Exception):
    """Base class for auth provider failures."""


class InvalidCredentialsError(AuthError):
    pass


class EmailAlreadyInUseError(AuthError):
    pass


class WeakPasswordError(AuthError):
    pass


class SessionExpiredError(AuthError):
    pass


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================


class Subscription:
    """
    Cancellation handle for a live listener.

    cancel() is idempotent; calling the handle is the same as cancel().
    """

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self._lock = threading.Lock()
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            on_cancel, self._on_cancel = self._on_cancel, None
        if on_cancel is not None:
            on_cancel()

    def __call__(self) -> None:
        self.cancel()


@dataclass
class AuthEvent:
    """Signed-in account as reported by the auth provider."""
    subject_id: str
    email: str
    display_name: Optional[str] = None


# =============================================================================
# STORE CONTRACT
# =============================================================================


class Transaction(ABC):
    """Handle passed to a transaction body; scoped to a single attempt."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, fields: dict) -> None:
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, partial: dict) -> None:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    def new_id(self) -> str:
        """Reserve an id for a document created by this transaction."""


class DocumentStore(ABC):
    """Transactional document store with live queries."""

    default_max_attempts = 5
    backoff_base = 0.05

    @abstractmethod
    def get_document(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def set_document(self, collection: str, doc_id: str, fields: dict) -> None:
        ...

    @abstractmethod
    def add_document(self, collection: str, fields: dict) -> str:
        ...

    @abstractmethod
    def update_document(self, collection: str, doc_id: str, partial: dict) -> None:
        ...

    @abstractmethod
    def delete_document(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    def query_collection(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[OrderBy] = None,
    ) -> list[dict]:
        ...

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        callback: Callable[[list[dict]], None],
        filters: Iterable[Filter] = (),
        order_by: Optional[OrderBy] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Subscription:
        ...

    @abstractmethod
    def subscribe_document(
        self,
        collection: str,
        doc_id: str,
        callback: Callable[[Optional[dict]], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Subscription:
        ...

    @abstractmethod
    def run_transaction(self, body: Callable[[Transaction], Any], max_attempts: Optional[int] = None) -> Any:
        ...

    @abstractmethod
    def create_index(self, collection: str, fields: Iterable[str]) -> None:
        ...

    @abstractmethod
    def list_indexes(self) -> list[tuple[str, tuple[str, ...]]]:
        ...


class AuthProvider(ABC):
    """Credential store with a single signed-in session per instance."""

    @property
    @abstractmethod
    def current_user(self) -> Optional[AuthEvent]:
        ...

    @abstractmethod
    def create_account(self, email: str, password: str, display_name: Optional[str] = None) -> AuthEvent:
        ...

    @abstractmethod
    def authenticate(self, email: str, password: str) -> AuthEvent:
        ...

    @abstractmethod
    def sign_out(self) -> None:
        ...

    @abstractmethod
    def on_auth_state_change(self, callback: Callable[[Optional[AuthEvent]], None]) -> Subscription:
        ...


_ID_ALPHABET = string.ascii_letters + string.digits


def generate_document_id() -> str:
    """Random 20-character id for documents created without an explicit id."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(20))


def clean_fields(fields: dict) -> dict:
    """Document body as stored: a shallow copy without the synthetic "id" key."""
    if not isinstance(fields, dict):
        raise TypeError("document fields must be a dict")
    return {k: v for k, v in fields.items() if k != "id"}
