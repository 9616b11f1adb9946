"""Publish/subscribe plumbing between the background workers and the caller."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from queue import Empty, Queue
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

CHILDREN_READY = "children-ready"
FETCH_FAILED = "fetch-failed"
SESSION_CHANGED = "session-changed"
GROUP_CHANGED = "group-changed"
THUMBNAIL_READY = "thumbnail-ready"

TOPICS = (CHILDREN_READY, FETCH_FAILED, SESSION_CHANGED, GROUP_CHANGED, THUMBNAIL_READY)


class Dispatcher:
    """Runs a callable on the presentation thread."""

    def call(self, fn: Callable[[], None]) -> None:
        raise NotImplementedError


class ImmediateDispatcher(Dispatcher):
    """Runs the callable on whatever thread publishes."""

    def call(self, fn: Callable[[], None]) -> None:
        fn()


class QueueDispatcher(Dispatcher):
    """Collects work until the owning thread calls ``drain()``."""

    def __init__(self) -> None:
        self._pending: "Queue[Callable[[], None]]" = Queue()

    def call(self, fn: Callable[[], None]) -> None:
        self._pending.put(fn)

    def drain(self) -> int:
        """Run every queued callable; return how many ran."""
        ran = 0
        while True:
            try:
                fn = self._pending.get_nowait()
            except Empty:
                return ran
            fn()
            ran += 1


class EventBus:
    def __init__(self, dispatcher: Dispatcher | None = None) -> None:
        self.dispatcher = dispatcher or ImmediateDispatcher()
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Register ``callback`` for ``topic``; the returned callable unsubscribes it."""
        if topic not in TOPICS:
            raise ValueError(f"Unknown topic: {topic}")
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._subscribers[topic].remove(callback)
                except ValueError:
                    pass

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(topic, ()))
        if not callbacks:
            return
        self.dispatcher.call(lambda: self._deliver(topic, callbacks, payload))

    @staticmethod
    def _deliver(topic: str, callbacks: List[Callable[[Any], None]], payload: Any) -> None:
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber %r for %s raised", callback, topic)


__all__ = [
    "CHILDREN_READY",
    "FETCH_FAILED",
    "SESSION_CHANGED",
    "GROUP_CHANGED",
    "THUMBNAIL_READY",
    "Dispatcher",
    "ImmediateDispatcher",
    "QueueDispatcher",
    "EventBus",
]
