from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from omero_browser.base import Credentials, RemoteRepository, SessionHandle
from omero_browser.errors import AuthError, BrowserError
from omero_browser.events import GROUP_CHANGED, SESSION_CHANGED, EventBus
from omero_browser.model import ALL_MEMBERS, Group, Owner
from omero_browser.uris import server_uri

logger = logging.getLogger(__name__)

# System groups that are never offered for browsing
SYSTEM_GROUP_IDS = frozenset({0, 1})


@dataclass(frozen=True)
class SessionState:
    server_uri: str
    username: str
    logged_in: bool


class Session:
    """One authenticated connection and its active group.

    Use ``Session.login``; a session cannot be reopened after ``logout``.
    """

    def __init__(
        self,
        repository: RemoteRepository,
        credentials: Credentials,
        handle: SessionHandle,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.repository = repository
        self.credentials = credentials
        self.handle = handle
        self.bus = bus
        self._active_group = handle.default_group
        self._members_cache: Dict[int, List[Owner]] = {}
        self._members_lock = threading.Lock()
        self._logged_in = True

    @classmethod
    def login(
        cls,
        repository: RemoteRepository,
        credentials: Credentials,
        bus: Optional[EventBus] = None,
    ) -> "Session":
        """Connect to the server.

        Raises:
            AuthError: for every failure, with a user-facing ``hint``.
        """
        clean = server_uri(credentials.server_uri)
        if clean is None:
            raise AuthError("bad_url", f"Not a server address: {credentials.server_uri!r}")
        try:
            handle = repository.login(credentials)
        except AuthError:
            raise
        except BrowserError as e:
            raise AuthError("unreachable", str(e)) from e
        session = cls(repository, credentials, handle, bus)
        logger.info("Logged in to %s as %s", clean, credentials.username)
        session._publish_state()
        return session

    # ---- State ----
    @property
    def user(self) -> Owner:
        return self.handle.user

    @property
    def is_admin(self) -> bool:
        return self.handle.is_admin

    @property
    def active_group(self) -> Group:
        return self._active_group

    @property
    def logged_in(self) -> bool:
        return self._logged_in

    @property
    def server_uri(self) -> str:
        return server_uri(self.credentials.server_uri) or self.credentials.server_uri

    def state(self) -> SessionState:
        return SessionState(self.server_uri, self.credentials.username, self._logged_in)

    # ---- Actions ----
    def switch_group(self, group_id: int) -> bool:
        """Make ``group_id`` the active group if the user may browse it.

        Anything else is silently ignored; returns whether the switch happened.
        """
        if group_id == self._active_group.id:
            return False
        if group_id not in self.handle.member_of and not self.is_admin:
            logger.debug("User %s is not a member of group %s, staying in %s",
                         self.credentials.username, group_id, self._active_group.id)
            return False
        self.repository.switch_group(self.handle, group_id)
        group = self._find_group(group_id)
        self._active_group = group
        if self.bus is not None:
            self.bus.publish(GROUP_CHANGED, group)
        return True

    def is_alive(self) -> bool:
        if not self._logged_in:
            return False
        try:
            return bool(self.repository.is_alive(self.handle))
        except Exception as e:
            logger.error("Liveness check failed: %s", e)
            return False

    def logout(self) -> None:
        """Close the connection. Caches built on this session must be discarded."""
        if not self._logged_in:
            return
        try:
            self.repository.logout(self.handle)
        finally:
            self._logged_in = False
            with self._members_lock:
                self._members_cache.clear()
            logger.info("Logged out of %s (%s)", self.server_uri, self.credentials.username)
            self._publish_state()

    # ---- Groups and owners ----
    def group_members(self, group: Optional[Group] = None) -> List[Owner]:
        """Members of ``group`` (default: the active group), sorted by name."""
        group = group if group is not None else self._active_group
        with self._members_lock:
            cached = self._members_cache.get(group.id)
        if cached is not None:
            return list(cached)
        members = sorted(self.repository.list_group_members(group.id), key=lambda o: o.display_name)
        with self._members_lock:
            self._members_cache[group.id] = members
        return list(members)

    def available_groups(self) -> Dict[Group, List[Owner]]:
        """Groups the user may browse mapped to their owners, "all members" first.

        Groups are ordered by name; the system groups are left out.
        """
        groups = [
            g for g in self.repository.list_groups(self.user.id, self.is_admin)
            if g.id not in SYSTEM_GROUP_IDS
        ]
        result: Dict[Group, List[Owner]] = {}
        for group in sorted(groups, key=lambda g: g.display_name):
            result[group] = [ALL_MEMBERS] + self.group_members(group)
        return result

    def _find_group(self, group_id: int) -> Group:
        for group in self.repository.list_groups(self.user.id, self.is_admin):
            if group.id == group_id:
                return group
        return Group(group_id, str(group_id))

    def _publish_state(self) -> None:
        if self.bus is not None:
            self.bus.publish(SESSION_CHANGED, self.state())
