#!/usr/bin/env python3
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from omero_browser.model import Group, ObjectRef, Owner, RemoteObject


@dataclass(frozen=True)
class Credentials:
    """What a login needs. ``port`` is kept for servers reached over ICE."""

    server_uri: str
    username: str
    password: str
    port: int = 4064

    def __repr__(self) -> str:
        return f"Credentials(server_uri={self.server_uri!r}, username={self.username!r}, port={self.port})"


@dataclass
class SessionHandle:
    """Result of a successful login, as reported by the remote repository."""

    user: Owner
    default_group: Group
    is_admin: bool = False
    member_of: List[int] = field(default_factory=list)
    token: Optional[str] = None


class RemoteRepository(ABC):
    """Base class for the remote image repository collaborator.

    Subclasses implement transport and wire format. Every method may block;
    callers on a presentation thread go through the loader or the thumbnail
    service instead of calling these directly.
    """

    # ---- Session ----
    @abstractmethod
    def login(self, credentials: Credentials) -> SessionHandle:
        """Authenticate. Raises ``AuthError`` on any failure."""

    @abstractmethod
    def switch_group(self, handle: SessionHandle, group_id: int) -> None:
        ...

    @abstractmethod
    def logout(self, handle: SessionHandle) -> None:
        ...

    @abstractmethod
    def is_alive(self, handle: SessionHandle) -> bool:
        ...

    # ---- Hierarchy ----
    @abstractmethod
    def fetch_children(self, parent: RemoteObject, group: Optional[Group], owner: Optional[Owner]) -> List[RemoteObject]:
        """Immediate children of ``parent``, already converted to model nodes."""

    @abstractmethod
    def fetch_orphaned_images(self, server: RemoteObject, group: Optional[Group], owner: Optional[Owner]) -> List[RemoteObject]:
        ...

    # ---- Groups and owners ----
    @abstractmethod
    def list_groups(self, user_id: int, admin: bool) -> List[Group]:
        """Groups the user may browse; every group when ``admin`` is set."""

    @abstractmethod
    def list_group_members(self, group_id: int) -> List[Owner]:
        ...

    # ---- Annotations ----
    @abstractmethod
    def read_tags(self, ref: ObjectRef) -> List[Tuple[int, str]]:
        ...

    @abstractmethod
    def read_key_values(self, ref: ObjectRef) -> List[Tuple[str, str]]:
        """Every remote pair, in order, duplicates included."""

    @abstractmethod
    def read_annotations(self, ref: ObjectRef, kind: str) -> List[Dict]:
        """Raw annotation records of one kind (tag, map, file, comment, rating)."""

    @abstractmethod
    def link_tag(self, ref: ObjectRef, tag_id: int) -> None:
        ...

    @abstractmethod
    def unlink_tag(self, ref: ObjectRef, tag_id: int) -> None:
        ...

    @abstractmethod
    def list_group_tags(self) -> List[Tuple[int, str]]:
        ...

    @abstractmethod
    def create_tag(self, name: str) -> int:
        ...

    @abstractmethod
    def write_key_values(self, ref: ObjectRef, pairs: Dict[str, str]) -> None:
        """Set every key of ``pairs``, replacing an existing key's value."""

    @abstractmethod
    def delete_key_values(self, ref: ObjectRef, keys: Sequence[str]) -> None:
        ...

    # ---- Assets ----
    @abstractmethod
    def fetch_thumbnail(self, image_id: int, size: int) -> bytes:
        ...
