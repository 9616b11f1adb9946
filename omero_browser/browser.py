from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional

from omero_browser.base import Credentials, RemoteRepository
from omero_browser.cache import HierarchyCache
from omero_browser.config import BrowserOptions
from omero_browser.events import EventBus
from omero_browser.loader import AsyncLoader
from omero_browser.metadata import PushReport, parent_hierarchy, pull_metadata, push_metadata
from omero_browser.model import Group, ObjectRef, ObjectType, Owner, RemoteObject
from omero_browser.reconcile import UpdatePolicy
from omero_browser.search import filter_nodes
from omero_browser.session import Session
from omero_browser.thumbnails import ThumbnailService
from omero_browser.uris import object_uri

logger = logging.getLogger(__name__)


class OmeroBrowser:
    """Entry point for a presentation layer: one session, one cache, two workers.

    ``children()`` never blocks; subscribe to ``children-ready`` on ``bus``
    to learn when a list that came back empty has been loaded.
    """

    def __init__(self, session: Session, options: Optional[BrowserOptions] = None, bus: Optional[EventBus] = None):
        self.options = options or BrowserOptions(server_uri=session.server_uri)
        self.session = session
        self.bus = bus or session.bus or EventBus()
        if session.bus is None:
            session.bus = self.bus
        self.loader = AsyncLoader(self.bus)
        self.cache = HierarchyCache(session.repository, self.loader, members=session.group_members)
        self.thumbnails = ThumbnailService(
            session.repository,
            workers=self.options.thumbnail_workers,
            size=self.options.thumbnail_size,
            bus=self.bus,
        )
        self._root = RemoteObject.server(session.server_uri)
        self.group: Group = session.active_group
        self.owner: Owner = session.user
        self.text = ""

    @classmethod
    def connect(
        cls,
        repository: RemoteRepository,
        options: BrowserOptions,
        password: str,
        bus: Optional[EventBus] = None,
    ) -> "OmeroBrowser":
        """Log in and build a browser. Raises ``AuthError``."""
        credentials = Credentials(options.server_uri, options.username, password, options.port)
        session = Session.login(repository, credentials, bus)
        return cls(session, options, bus)

    # ---- Browsing ----
    def root(self) -> RemoteObject:
        return self._root

    def select(self, group: Optional[Group] = None, owner: Optional[Owner] = None, text: Optional[str] = None) -> None:
        """Change the current selection. A group the user may not browse is ignored."""
        if group is not None and group != self.group:
            if group.is_all_groups or group == self.session.active_group or self.session.switch_group(group.id):
                self.group = group
        if owner is not None:
            self.owner = owner
        if text is not None:
            self.text = text

    def _fetch_group(self) -> Group:
        return self.session.active_group if self.group.is_all_groups else self.group

    def _visible(self, parent: RemoteObject, children: List[RemoteObject]) -> List[RemoteObject]:
        if parent.type == ObjectType.SERVER and self.text:
            children = [c for c in children if c.type != ObjectType.ORPHANED_FOLDER]
        return filter_nodes(children, self.group, self.owner, self.text)

    def children(self, node: RemoteObject) -> List[RemoteObject]:
        """Filtered children of ``node``; empty until the loader has fetched them."""
        return self._visible(node, self.cache.get_children(node, self._fetch_group(), self.owner))

    def children_sync(self, node: RemoteObject, timeout: Optional[float] = None) -> List[RemoteObject]:
        return self._visible(node, self.cache.children_sync(node, self._fetch_group(), self.owner, timeout))

    def is_leaf(self, node: RemoteObject) -> bool:
        return self.cache.is_leaf(node, self._fetch_group(), self.owner)

    def list_images(self, node: RemoteObject) -> List[RemoteObject]:
        return self.cache.list_images(node, self._fetch_group(), self.owner)

    def image_uris(self, nodes: Iterable[RemoteObject]) -> List[str]:
        """Web client links of every image at or below ``nodes``, without repeats."""
        uris: List[str] = []
        seen = set()
        for node in nodes:
            for image in self.list_images(node):
                if image.id in seen:
                    continue
                seen.add(image.id)
                uris.append(object_uri(self.session.server_uri, ObjectType.IMAGE, image.id))
        return uris

    def object_uri(self, node: RemoteObject) -> str:
        return object_uri(self.session.server_uri, node.type, node.id)

    def hierarchy_metadata(self, node: RemoteObject) -> Dict[str, str]:
        return parent_hierarchy(node)

    def request_thumbnail(self, image: RemoteObject):
        return self.thumbnails.request(image.id)

    # ---- Metadata ----
    def push_metadata(
        self,
        ref: ObjectRef,
        metadata: Mapping[str, str],
        kvp_policy: UpdatePolicy = UpdatePolicy.KEEP_KEYS,
        tag_policy: UpdatePolicy = UpdatePolicy.KEEP_KEYS,
    ) -> PushReport:
        report = push_metadata(self.session.repository, ref, metadata, kvp_policy, tag_policy)
        logger.info("Metadata pushed to %s-%s: %s", ref.type.uri_name, ref.id, report.summary())
        return report

    def pull_metadata(
        self,
        ref: ObjectRef,
        local: Mapping[str, str],
        policy: UpdatePolicy = UpdatePolicy.KEEP_KEYS,
    ) -> Dict[str, str]:
        """Local metadata merged with the object's key/values and tags (as ``name=name``)."""
        merged, split = pull_metadata(self.session.repository, ref, local, policy)
        logger.debug("Pulled %d existing and %d new entries from %s-%s",
                     len(split.existing), len(split.new), ref.type.uri_name, ref.id)
        return merged

    # ---- Teardown ----
    def close(self) -> None:
        """Stop both workers, drop the cache and log out."""
        self.loader.shutdown(wait=True)
        self.thumbnails.shutdown()
        self.cache.clear()
        self.session.logout()


__all__ = ["OmeroBrowser"]
