# Overview: Live subscriptions over groups, products and stock history.

"""
Live subscriptions.

Each function registers a listener on the document store and returns a
Subscription handle; the callback receives a full snapshot immediately and
after every committed change, until the handle is cancelled. Owners must
cancel exactly once on teardown (further cancels are no-ops).

Stock history is delivered most recent first. The ordered query needs a
composite index (productId, timestamp); when the store reports it missing,
the subscription switches to the unordered query and sorts each snapshot
with the store's own ordering, so callbacks cannot tell the difference.

Failures other than a missing index are logged and delivered as an empty
snapshot.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from ..store import DocumentStore, Filter, MissingIndexError, Subscription
from ..store.query import sort_documents
from .catalog_service import PRODUCT_GROUPS
from .stock_service import (
    HISTORY_ORDER,
    PRODUCTS,
    STOCK_HISTORY,
    history_filters,
    warn_missing_index_once,
)

logger = logging.getLogger(__name__)


class SwitchingSubscription(Subscription):
    """
    Handle over a listener that may be replaced while live.

    cancel() stops whichever inner listener is current; listeners attached
    after cancellation are stopped immediately.
    """

    def __init__(self):
        super().__init__(on_cancel=self._cancel_inner)
        self._inner_lock = threading.Lock()
        self._inner: Optional[Subscription] = None

    def attach(self, inner: Subscription) -> None:
        if not inner.active:
            return
        with self._inner_lock:
            if self.active:
                self._inner = inner
                return
        inner.cancel()

    def _cancel_inner(self) -> None:
        with self._inner_lock:
            inner, self._inner = self._inner, None
        if inner is not None:
            inner.cancel()


def _degrade_to_empty(what: str, callback: Callable[[list[dict]], None]):
    def _on_error(exc: Exception) -> None:
        logger.error("Error subscribing to %s: %s", what, exc)
        callback([])
    return _on_error


def subscribe_to_product_groups(store: DocumentStore, callback: Callable[[list[dict]], None]) -> Subscription:
    return store.subscribe(
        PRODUCT_GROUPS,
        callback,
        on_error=_degrade_to_empty("product groups", callback),
    )


def subscribe_to_products(
    store: DocumentStore,
    group_id: str,
    callback: Callable[[list[dict]], None],
) -> Subscription:
    return store.subscribe(
        PRODUCTS,
        callback,
        filters=[Filter("groupId", group_id)],
        on_error=_degrade_to_empty("products", callback),
    )


def subscribe_to_product_by_id(
    store: DocumentStore,
    product_id: str,
    callback: Callable[[Optional[dict]], None],
) -> Subscription:
    """Callback receives the product, or None once it does not exist."""
    def _deliver(product: Optional[dict]) -> None:
        if product is None:
            logger.warning("Product document %s does not exist", product_id)
        callback(product)

    return store.subscribe_document(
        PRODUCTS,
        product_id,
        _deliver,
        on_error=lambda exc: logger.error("Error subscribing to product %s: %s", product_id, exc),
    )


def subscribe_to_stock_history(
    store: DocumentStore,
    product_id: str,
    callback: Callable[[list[dict]], None],
) -> Subscription:
    filters = history_filters(product_id)
    handle = SwitchingSubscription()

    def _sorted_callback(history: list[dict]) -> None:
        callback(sort_documents(history, HISTORY_ORDER))

    def _on_error(exc: Exception) -> None:
        if not isinstance(exc, MissingIndexError):
            logger.error("Error subscribing to stock history of %s: %s", product_id, exc)
            callback([])
            return
        warn_missing_index_once(exc)
        if not handle.active:
            return
        handle.attach(store.subscribe(
            STOCK_HISTORY,
            _sorted_callback,
            filters=filters,
            on_error=_degrade_to_empty("stock history (fallback)", callback),
        ))

    handle.attach(store.subscribe(
        STOCK_HISTORY,
        callback,
        filters=filters,
        order_by=HISTORY_ORDER,
        on_error=_on_error,
    ))
    return handle
