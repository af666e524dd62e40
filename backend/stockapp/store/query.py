# Overview: Query primitives shared by every store backend and by client-side fallbacks.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

ASCENDING = "asc"
DESCENDING = "desc"


@dataclass(frozen=True)
class Filter:
    """Equality filter: document[field] == value."""
    field: str
    value: Any

    def matches(self, document: dict) -> bool:
        return document.get(self.field) == self.value


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: str = ASCENDING

    def __post_init__(self):
        if self.direction not in (ASCENDING, DESCENDING):
            raise ValueError("direction must be 'asc' or 'desc'")

    @property
    def descending(self) -> bool:
        return self.direction == DESCENDING


def _value_key(value: Any) -> tuple:
    # Mixed types order as: missing/null < bool < number < string < other
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, repr(value))


def document_sort_key(document: dict, field: str) -> tuple:
    """Sort key for ordering by field; ties fall back to the document id."""
    return (_value_key(document.get(field)), document.get("id") or "")


def sort_documents(documents: Iterable[dict], order_by: OrderBy) -> list[dict]:
    """
    Order documents exactly as an ordered store query would.

    Used by the stores themselves and by callers that had to fall back to
    an unordered query, so both paths produce identical sequences.
    """
    return sorted(
        documents,
        key=lambda doc: document_sort_key(doc, order_by.field),
        reverse=order_by.descending,
    )


def apply_query(
    documents: Iterable[dict],
    filters: Iterable[Filter] = (),
    order_by: Optional[OrderBy] = None,
) -> list[dict]:
    filters = tuple(filters)
    matched = [doc for doc in documents if all(f.matches(doc) for f in filters)]
    if order_by is not None:
        return sort_documents(matched, order_by)
    return sorted(matched, key=lambda doc: doc.get("id") or "")


def required_index(filters: Iterable[Filter], order_by: Optional[OrderBy]) -> Optional[tuple[str, ...]]:
    """
    Composite index a query needs, or None.

    Equality filters combined with ordering on another field need an index
    over (filter fields..., order field). Filter fields are sorted so the
    same index serves filters given in any order.
    """
    if order_by is None:
        return None
    filter_fields = sorted({f.field for f in filters})
    if not filter_fields or filter_fields == [order_by.field]:
        return None
    return tuple(name for name in filter_fields if name != order_by.field) + (order_by.field,)


def normalize_index(fields: Iterable[str]) -> tuple[str, ...]:
    fields = tuple(fields)
    if len(fields) < 2:
        raise ValueError("a composite index needs at least two fields")
    *filter_fields, order_field = fields
    return tuple(sorted(set(filter_fields))) + (order_field,)
