"""Single background worker that performs hierarchy fetches."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from omero_browser.errors import AccessError, TransientFetchError
from omero_browser.events import CHILDREN_READY, FETCH_FAILED, EventBus
from omero_browser.model import Group, Owner, RemoteObject
from omero_browser.orphans import fold_orphans

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheKey:
    """Unit of caching: one parent, seen from one group and owner."""

    parent_id: int
    parent_type: str
    group_id: int
    owner_id: int


class FetchState(Enum):
    UNREQUESTED = "unrequested"
    FETCHING = "fetching"
    CACHED = "cached"


@dataclass(frozen=True)
class ChildrenReady:
    key: CacheKey
    children: List[RemoteObject]


@dataclass(frozen=True)
class FetchFailed:
    key: CacheKey
    error: Exception


Job = Callable[[], List[RemoteObject]]
Store = Callable[[CacheKey, List[RemoteObject]], None]


class AsyncLoader:
    """Runs at most one fetch per key, one at a time, off the caller's thread.

    The per-key state is only ever changed on the worker thread, so the
    check "is this key already fetching or cached" and the transition to
    FETCHING happen without a lock. Once shut down, new requests are
    dropped.
    """

    def __init__(self, bus: Optional[EventBus] = None) -> None:
        self.bus = bus
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="children-loader")
        self._states: Dict[CacheKey, FetchState] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def state(self, key: CacheKey) -> FetchState:
        return self._states.get(key, FetchState.UNREQUESTED)

    def fetch(self, key: CacheKey, job: Job, store: Store) -> Optional["Future[Optional[List[RemoteObject]]]"]:
        """Queue ``job`` for ``key``. Returns None when the loader is shut down."""
        if self._closed:
            logger.debug("Loader is shut down, dropping fetch for %s", key)
            return None
        try:
            return self._executor.submit(self._run, key, job, store)
        except RuntimeError:
            logger.debug("Loader is shut down, dropping fetch for %s", key)
            return None

    def _run(self, key: CacheKey, job: Job, store: Store) -> Optional[List[RemoteObject]]:
        try:
            return self.run_inline(key, job, store)
        except TransientFetchError:
            return None

    def run_inline(self, key: CacheKey, job: Job, store: Store) -> Optional[List[RemoteObject]]:
        """Execute ``job`` for ``key`` on the current thread, which must be the worker.

        Returns the stored children, or None when the key was not
        UNREQUESTED. A transient failure leaves the key UNREQUESTED, is
        published and re-raised so that an enclosing job fails too.
        """
        if self.state(key) is not FetchState.UNREQUESTED:
            return None
        self._states[key] = FetchState.FETCHING
        try:
            children = job()
        except AccessError as e:
            logger.warning("No access to children of %s, treating as empty: %s", key, e)
            children = []
        except TransientFetchError as e:
            logger.warning("Fetching children of %s failed: %s", key, e)
            self._fail(key, e)
            raise
        except Exception as e:
            logger.exception("Unexpected error while fetching children of %s", key)
            self._fail(key, e)
            raise TransientFetchError(str(e)) from e

        store(key, children)
        self._states[key] = FetchState.CACHED
        if self.bus is not None:
            self.bus.publish(CHILDREN_READY, ChildrenReady(key, children))
        return children

    def _fail(self, key: CacheKey, error: Exception) -> None:
        self._states.pop(key, None)
        if self.bus is not None:
            self.bus.publish(FETCH_FAILED, FetchFailed(key, error))

    def reset(self) -> None:
        """Forget every key. Only meaningful together with clearing the cache."""
        self._states.clear()

    def shutdown(self, wait: bool = False) -> None:
        """Drop queued fetches; a fetch already running finishes on its own."""
        self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)


def sort_children(children: Iterable[RemoteObject]) -> List[RemoteObject]:
    """Display order: by type, then case-insensitive name."""
    return sorted(children, key=lambda c: (c.type.order, (c.name or "").lower()))


def gather_all_members(
    server: RemoteObject,
    group: Optional[Group],
    owners: Iterable[Owner],
    load_one: Callable[[Owner], List[RemoteObject]],
) -> List[RemoteObject]:
    """Server children for every owner, concatenated, sorted, with one orphan folder.

    Owners are loaded one after the other; ``load_one`` gets a concrete owner.
    """
    combined: List[RemoteObject] = []
    for owner in owners:
        if owner.is_all_members:
            continue
        combined.extend(load_one(owner))
    return sort_children(fold_orphans(combined, server, group))


__all__ = [
    "CacheKey",
    "FetchState",
    "ChildrenReady",
    "FetchFailed",
    "AsyncLoader",
    "sort_children",
    "gather_all_members",
]
