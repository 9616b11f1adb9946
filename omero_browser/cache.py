from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Callable, Dict, List, Optional

from omero_browser.base import RemoteRepository
from omero_browser.errors import TransientFetchError
from omero_browser.loader import AsyncLoader, CacheKey, gather_all_members, sort_children
from omero_browser.model import ALL_MEMBERS, Group, ObjectType, Owner, RemoteObject
from omero_browser.orphans import make_orphaned_folder

logger = logging.getLogger(__name__)

MembersLookup = Callable[[Optional[Group]], List[Owner]]


def cache_key(parent: RemoteObject, group: Optional[Group], owner: Optional[Owner]) -> CacheKey:
    """Server children are scoped by the selected owner; any other node by its own owner."""
    group_id = group.id if group is not None else -1
    if parent.type == ObjectType.SERVER:
        scope = owner if owner is not None else ALL_MEMBERS
    else:
        scope = parent.owner if parent.owner is not None else ALL_MEMBERS
    return CacheKey(parent.id, parent.type.name, group_id, scope.id)


class HierarchyCache:
    """Children of every node fetched so far, for the lifetime of one session.

    Entries are written by the loader's worker thread only and are never
    refreshed; ``clear()`` is the only invalidation.
    """

    def __init__(
        self,
        repository: RemoteRepository,
        loader: AsyncLoader,
        members: Optional[MembersLookup] = None,
    ) -> None:
        self.repository = repository
        self.loader = loader
        self.members = members or (lambda group: [])
        self._maps: Dict[str, Dict[CacheKey, List[RemoteObject]]] = {}

    # ---- Reads (any thread) ----
    def lookup(self, key: CacheKey) -> Optional[List[RemoteObject]]:
        entries = self._maps.get(key.parent_type)
        if entries is None:
            return None
        children = entries.get(key)
        return list(children) if children is not None else None

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._maps.values())

    def get_children(
        self,
        parent: RemoteObject,
        group: Optional[Group],
        owner: Optional[Owner],
    ) -> List[RemoteObject]:
        """Cached children, or an empty list while a fetch is queued.

        Subscribers to ``children-ready`` are told when the real list lands.
        """
        if parent.type == ObjectType.IMAGE:
            return []
        if parent.type == ObjectType.ORPHANED_FOLDER:
            return list(parent.images)
        key = cache_key(parent, group, owner)
        cached = self.lookup(key)
        if cached is not None:
            return cached
        if parent.is_leaf:
            return []
        self.load(parent, group, owner)
        return []

    def is_leaf(self, node: RemoteObject, group: Optional[Group], owner: Optional[Owner]) -> bool:
        if node.is_leaf:
            return True
        if node.type in (ObjectType.SERVER, ObjectType.ORPHANED_FOLDER):
            return False
        cached = self.lookup(cache_key(node, group, owner))
        return cached is not None and len(cached) == 0

    # ---- Fetching ----
    def load(
        self,
        parent: RemoteObject,
        group: Optional[Group],
        owner: Optional[Owner],
    ) -> Optional["Future[Optional[List[RemoteObject]]]"]:
        key = cache_key(parent, group, owner)
        if parent.type == ObjectType.SERVER and (owner is None or owner.is_all_members):
            job = lambda: self._load_all_members(parent, group)
        else:
            job = lambda: self._fetch(parent, group, owner)
        return self.loader.fetch(key, job, self._store)

    def children_sync(
        self,
        parent: RemoteObject,
        group: Optional[Group],
        owner: Optional[Owner],
        timeout: Optional[float] = None,
    ) -> List[RemoteObject]:
        """Blocking variant of ``get_children`` for callers without an event loop."""
        if parent.type == ObjectType.IMAGE:
            return []
        if parent.type == ObjectType.ORPHANED_FOLDER:
            return list(parent.images)
        key = cache_key(parent, group, owner)
        cached = self.lookup(key)
        if cached is not None:
            return cached
        future = self.load(parent, group, owner)
        if future is None:
            return []
        future.result(timeout=timeout)
        return self.lookup(key) or []

    def list_images(
        self,
        node: RemoteObject,
        group: Optional[Group],
        owner: Optional[Owner],
    ) -> List[RemoteObject]:
        """Every image below ``node``, depth first."""
        if node.type == ObjectType.IMAGE:
            return [node]
        if node.type == ObjectType.ORPHANED_FOLDER:
            return list(node.images)
        if node.type == ObjectType.PLATE_ACQUISITION:
            return []
        images: List[RemoteObject] = []
        for child in self.children_sync(node, group, owner):
            images.extend(self.list_images(child, group, owner))
        return images

    def clear(self) -> None:
        self._maps.clear()
        self.loader.reset()

    # ---- Worker side ----
    def _store(self, key: CacheKey, children: List[RemoteObject]) -> None:
        self._maps.setdefault(key.parent_type, {})[key] = list(children)

    def _fetch(self, parent: RemoteObject, group: Optional[Group], owner: Optional[Owner]) -> List[RemoteObject]:
        if parent.type != ObjectType.SERVER:
            return list(self.repository.fetch_children(parent, group, parent.owner))
        children = list(self.repository.fetch_children(parent, group, owner))
        orphans = self.repository.fetch_orphaned_images(parent, group, owner)
        children.append(make_orphaned_folder(parent, owner, group, orphans))
        return sort_children(children)

    def _load_all_members(self, server: RemoteObject, group: Optional[Group]) -> List[RemoteObject]:
        def load_one(owner: Owner) -> List[RemoteObject]:
            key = cache_key(server, group, owner)
            cached = self.lookup(key)
            if cached is not None:
                return cached
            children = self.loader.run_inline(key, lambda: self._fetch(server, group, owner), self._store)
            if children is None:
                raise TransientFetchError(f"Children of {key} are not available")
            return children

        return gather_all_members(server, group, self.members(group), load_one)
