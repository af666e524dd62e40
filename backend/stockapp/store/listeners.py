# Overview: In-process registry of live queries; re-evaluates them after commits.

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Optional

from .base import Subscription

logger = logging.getLogger(__name__)


class _Listener:
    def __init__(self, collection, evaluate, deliver, on_error):
        self.collection = collection
        self.evaluate = evaluate
        self.deliver = deliver
        self.on_error = on_error
        self.active = True
        # serializes deliveries so a listener sees snapshots in commit order
        self.lock = threading.RLock()


class ListenerRegistry:
    """
    Live listeners keyed by collection.

    Each listener owns an evaluate() that produces its snapshot from the
    store, and a deliver(snapshot) callback. A failing evaluate() is
    reported to on_error and ends the listener; a failing deliver() is
    logged and the listener stays subscribed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: list[_Listener] = []

    def register(
        self,
        collection: str,
        evaluate: Callable[[], object],
        deliver: Callable[[object], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Subscription:
        listener = _Listener(collection, evaluate, deliver, on_error)
        with self._lock:
            self._listeners.append(listener)

        subscription = Subscription(on_cancel=lambda: self._remove(listener))
        self._refresh(listener, subscription)
        listener.subscription = subscription
        return subscription

    def active_count(self, collection: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for l in self._listeners if collection is None or l.collection == collection)

    def notify(self, collections: Iterable[str]) -> None:
        touched = set(collections)
        if not touched:
            return
        with self._lock:
            targets = [l for l in self._listeners if l.collection in touched]
        for listener in targets:
            self._refresh(listener, getattr(listener, "subscription", None))

    def _remove(self, listener: _Listener) -> None:
        listener.active = False
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _refresh(self, listener: _Listener, subscription: Optional[Subscription]) -> None:
        with listener.lock:
            if not listener.active:
                return
            try:
                snapshot = listener.evaluate()
            except Exception as exc:
                self._remove(listener)
                if subscription is not None:
                    subscription.cancel()
                if listener.on_error is not None:
                    listener.on_error(exc)
                else:
                    logger.error("listener on %s failed: %s", listener.collection, exc)
                return
            if listener.active:
                try:
                    listener.deliver(snapshot)
                except Exception:
                    # a failing callback never reaches the writer or the other listeners
                    logger.exception("listener callback on %s failed", listener.collection)
