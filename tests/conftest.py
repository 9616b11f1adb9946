from __future__ import annotations

import itertools
import threading
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from omero_browser.base import Credentials, RemoteRepository, SessionHandle
from omero_browser.errors import AuthError
from omero_browser.model import Group, ObjectRef, ObjectType, Owner, RemoteObject

ALICE = Owner(1, "Alice Smith", username="alice")
BOB = Owner(2, "Bob Jones", username="bob")
LAB = Group(3, "Lab")
IMAGING = Group(5, "Imaging")
OTHER = Group(7, "Another lab")

# (type, id, name, owner, child count)
Descriptor = Tuple[ObjectType, int, str, Owner, int]


def make_node(
    obj_id: int,
    obj_type: ObjectType,
    name: str,
    owner: Optional[Owner] = ALICE,
    group: Optional[Group] = LAB,
    parent: Optional[RemoteObject] = None,
    child_count: int = 0,
) -> RemoteObject:
    return RemoteObject(obj_id, obj_type, name, owner=owner, group=group, parent=parent, child_count=child_count)


class FakeRepository(RemoteRepository):
    """In-memory repository recording every call."""

    def __init__(self) -> None:
        self.children: Dict[Tuple[ObjectType, int], List[Descriptor]] = {}
        self.server_children: Dict[int, List[Descriptor]] = {}
        self.orphans: Dict[int, List[Tuple[int, str]]] = {}
        self.members: Dict[int, List[Owner]] = {LAB.id: [BOB, ALICE], IMAGING.id: [ALICE]}
        self.groups = [Group(0, "system"), Group(1, "user"), LAB, IMAGING, OTHER]
        self.fetch_calls: List[Tuple[ObjectType, int, Optional[int]]] = []
        self.failures: Dict[Tuple[ObjectType, int], List[Exception]] = {}
        self.gate: Optional[threading.Event] = None
        self.is_admin = False
        self.alive: object = True
        self.switched: List[int] = []
        self.logged_out = False
        self.key_values: Dict[ObjectRef, List[Tuple[str, str]]] = {}
        self.tags: Dict[ObjectRef, List[Tuple[int, str]]] = {}
        self.group_tags: List[Tuple[int, str]] = []
        self.annotations: Dict[Tuple[ObjectRef, str], List[Dict]] = {}
        self.thumbnail_calls: List[int] = []
        self._tag_ids = itertools.count(100)

    # ---- Session ----
    def login(self, credentials: Credentials) -> SessionHandle:
        if credentials.password != "secret":
            raise AuthError("bad_credentials")
        return SessionHandle(user=ALICE, default_group=LAB, is_admin=self.is_admin, member_of=[1, LAB.id, IMAGING.id])

    def switch_group(self, handle: SessionHandle, group_id: int) -> None:
        self.switched.append(group_id)

    def logout(self, handle: SessionHandle) -> None:
        self.logged_out = True

    def is_alive(self, handle: SessionHandle) -> bool:
        if isinstance(self.alive, Exception):
            raise self.alive
        return bool(self.alive)

    # ---- Hierarchy ----
    def _build(self, descriptors: Sequence[Descriptor], parent: RemoteObject, group: Optional[Group]) -> List[RemoteObject]:
        return [
            RemoteObject(i, t, name, owner=owner, group=group, parent=parent, child_count=n)
            for t, i, name, owner, n in descriptors
        ]

    def fetch_children(self, parent: RemoteObject, group: Optional[Group], owner: Optional[Owner]) -> List[RemoteObject]:
        self.fetch_calls.append((parent.type, parent.id, owner.id if owner is not None else None))
        if self.gate is not None:
            self.gate.wait(5)
        pending = self.failures.get((parent.type, parent.id))
        if pending:
            raise pending.pop(0)
        if parent.type == ObjectType.SERVER:
            return self._build(self.server_children.get(owner.id, []), parent, group)
        return self._build(self.children.get((parent.type, parent.id), []), parent, group)

    def fetch_orphaned_images(self, server: RemoteObject, group: Optional[Group], owner: Optional[Owner]) -> List[RemoteObject]:
        return [
            RemoteObject(i, ObjectType.IMAGE, name, owner=owner, group=group, parent=server)
            for i, name in self.orphans.get(owner.id, [])
        ]

    # ---- Groups ----
    def list_groups(self, user_id: int, admin: bool) -> List[Group]:
        if admin:
            return list(self.groups)
        return [g for g in self.groups if g.id in (1, LAB.id, IMAGING.id)]

    def list_group_members(self, group_id: int) -> List[Owner]:
        return list(self.members.get(group_id, []))

    # ---- Annotations ----
    def read_tags(self, ref: ObjectRef) -> List[Tuple[int, str]]:
        return list(self.tags.get(ref, []))

    def read_key_values(self, ref: ObjectRef) -> List[Tuple[str, str]]:
        return list(self.key_values.get(ref, []))

    def read_annotations(self, ref: ObjectRef, kind: str) -> List[Dict]:
        return list(self.annotations.get((ref, kind), []))

    def link_tag(self, ref: ObjectRef, tag_id: int) -> None:
        name = dict(self.group_tags)[tag_id]
        self.tags.setdefault(ref, []).append((tag_id, name))

    def unlink_tag(self, ref: ObjectRef, tag_id: int) -> None:
        self.tags[ref] = [t for t in self.tags.get(ref, []) if t[0] != tag_id]

    def list_group_tags(self) -> List[Tuple[int, str]]:
        return list(self.group_tags)

    def create_tag(self, name: str) -> int:
        tag_id = next(self._tag_ids)
        self.group_tags.append((tag_id, name))
        return tag_id

    def write_key_values(self, ref: ObjectRef, pairs: Dict[str, str]) -> None:
        current = self.key_values.setdefault(ref, [])
        remaining = dict(pairs)
        for index, (key, _) in enumerate(current):
            if key in pairs:
                current[index] = (key, pairs[key])
                remaining.pop(key, None)
        current.extend(remaining.items())

    def delete_key_values(self, ref: ObjectRef, keys: Sequence[str]) -> None:
        self.key_values[ref] = [(k, v) for k, v in self.key_values.get(ref, []) if k not in keys]

    # ---- Assets ----
    def fetch_thumbnail(self, image_id: int, size: int) -> bytes:
        self.thumbnail_calls.append(image_id)
        return f"thumb-{image_id}-{size}".encode()


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials("https://omero.example.org", "alice", "secret")
