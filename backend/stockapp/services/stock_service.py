# Overview: Stock mutation protocol and the stock history audit trail.

"""
Stock mutation protocol.

A product's `stock`, `cartons` and `lastUpdated` fields change only here,
and every change writes exactly one `stockHistory` entry in the same store
transaction:

1. read the product inside the transaction (absent -> "Product not found")
2. changeAmount = newStock - previous stock
3. update the product and insert the history entry, sharing one timestamp
4. commit; a concurrent writer on the same product makes the store re-run
   the whole body (bounded attempts), never overwrite blindly

So no reader ever sees a stock value without its history entry, and for
one product the entries ordered by timestamp chain exactly:
entry[i].newStock == entry[i+1].previousStock.

Negative stock is accepted; range checks belong to the caller.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from ..store import (
    DESCENDING,
    DocumentNotFoundError,
    DocumentStore,
    Filter,
    MissingIndexError,
    OrderBy,
    StoreError,
    TransactionConflictError,
)
from ..store.query import sort_documents
from ..time_utils import now_iso
from .results import OperationResult
from .role_policy import is_admin

logger = logging.getLogger(__name__)

PRODUCTS = "products"
STOCK_HISTORY = "stockHistory"

# Most recent first
HISTORY_ORDER = OrderBy("timestamp", DESCENDING)

_warned_indexes: set[tuple[str, tuple[str, ...]]] = set()
_warned_lock = threading.Lock()


def warn_missing_index_once(exc: MissingIndexError) -> None:
    """Log the index diagnostic the first time a given index is found missing."""
    key = (exc.collection, exc.fields)
    with _warned_lock:
        if key in _warned_indexes:
            return
        _warned_indexes.add(key)
    logger.warning(
        "Missing index for this query. Using fallback query without sorting. "
        "To fix this permanently, create the required index: %s",
        exc.create_command,
    )


def history_filters(product_id: str) -> tuple[Filter, ...]:
    return (Filter("productId", product_id),)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def build_history_entry(
    *,
    product_id: str,
    product: dict,
    new_stock: int,
    new_cartons: int,
    actor_id: str,
    change_reason: str,
    timestamp: str,
) -> dict:
    previous_stock = product.get("stock") or 0
    return {
        "productId": product_id,
        "productName": product.get("name"),
        "previousStock": previous_stock,
        "newStock": new_stock,
        "previousCartons": product.get("cartons") or 0,
        "newCartons": new_cartons or 0,
        "changeAmount": new_stock - previous_stock,
        "userId": actor_id,
        "changeReason": change_reason or "",
        "timestamp": timestamp,
    }


def update_product_stock(
    store: DocumentStore,
    identity: Optional[dict],
    product_id: str,
    new_stock: int,
    new_cartons: int,
    change_reason: str = "",
    *,
    max_attempts: Optional[int] = None,
) -> OperationResult:
    """
    Set a product's stock and cartons, recording the change.

    The acting user is the resolved identity; only admins may mutate stock.
    On success the result carries the written history entry.
    """
    if not is_admin(identity):
        return OperationResult.fail("Admin role required to update stock", "permission_denied")
    if not _is_int(new_stock) or not _is_int(new_cartons):
        return OperationResult.fail("stock and cartons must be integers", "validation")

    actor_id = identity.get("id")

    def _body(tx):
        product = tx.get(PRODUCTS, product_id)
        if product is None:
            raise DocumentNotFoundError(PRODUCTS, product_id)

        timestamp = now_iso()
        entry = build_history_entry(
            product_id=product_id,
            product=product,
            new_stock=new_stock,
            new_cartons=new_cartons,
            actor_id=actor_id,
            change_reason=change_reason,
            timestamp=timestamp,
        )

        tx.update(PRODUCTS, product_id, {
            "stock": new_stock,
            "cartons": new_cartons,
            "lastUpdated": timestamp,
        })
        history_id = tx.new_id()
        tx.set(STOCK_HISTORY, history_id, entry)
        return {"id": history_id, **entry}

    try:
        entry = store.run_transaction(_body, max_attempts=max_attempts)
    except DocumentNotFoundError:
        return OperationResult.fail("Product not found", "not_found")
    except TransactionConflictError as exc:
        logger.error("stock update on %s gave up after retries: %s", product_id, exc)
        return OperationResult.fail(str(exc), "conflict")
    except StoreError as exc:
        logger.error("Error updating stock for %s: %s", product_id, exc)
        return OperationResult.fail(str(exc), "store_error")

    logger.info(
        "stock of %s changed %+d by %s (%s)",
        product_id, entry["changeAmount"], actor_id, entry["changeReason"] or "no reason",
    )
    return OperationResult.ok(history=entry)


def get_stock_history_by_product(store: DocumentStore, product_id: str) -> OperationResult:
    """History entries for one product, most recent first."""
    filters = history_filters(product_id)
    try:
        try:
            history = store.query_collection(STOCK_HISTORY, filters, HISTORY_ORDER)
        except MissingIndexError as exc:
            warn_missing_index_once(exc)
            history = sort_documents(store.query_collection(STOCK_HISTORY, filters), HISTORY_ORDER)
    except StoreError as exc:
        logger.error("Error getting stock history for %s: %s", product_id, exc)
        return OperationResult.fail(str(exc), "store_error")
    return OperationResult.ok(history=history)


def find_history_breaks(history: list[dict]) -> list[dict]:
    """
    Consecutive entries (oldest first) whose counters do not chain.

    Returns one {"previous": ..., "next": ...} pair per break; an empty
    list means the history reconstructs the stock sequence exactly.
    """
    ordered = sorted(history, key=lambda entry: (entry.get("timestamp") or "", entry.get("id") or ""))
    breaks = []
    for previous, following in zip(ordered, ordered[1:]):
        if previous.get("newStock") != following.get("previousStock"):
            breaks.append({"previous": previous, "next": following})
    return breaks


def audit_product_history(store: DocumentStore, product_id: str) -> OperationResult:
    """Check that a product's history chains and ends at its current stock."""
    try:
        product = store.get_document(PRODUCTS, product_id)
    except StoreError as exc:
        return OperationResult.fail(str(exc), "store_error")
    result = get_stock_history_by_product(store, product_id)
    if not result:
        return result

    history = result.data["history"]
    breaks = find_history_breaks(history)
    latest = history[0] if history else None
    matches_product = (
        product is None
        or latest is None
        or latest.get("newStock") == product.get("stock")
    )
    return OperationResult.ok(
        productId=product_id,
        productExists=product is not None,
        entries=len(history),
        breaks=breaks,
        matchesCurrentStock=matches_product,
        consistent=not breaks and matches_product,
    )
