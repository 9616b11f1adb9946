from __future__ import annotations

from typing import Iterable, List, Optional

from omero_browser.model import Group, ObjectType, Owner, RemoteObject


def _group_matches(node: RemoteObject, group: Optional[Group]) -> bool:
    if group is None or group.is_all_groups:
        return True
    return node.group == group


def _owner_matches(node: RemoteObject, owner: Optional[Owner]) -> bool:
    if owner is None or owner.is_all_members:
        return True
    return node.owner == owner


def matches_text(node: Optional[RemoteObject], text: Optional[str]) -> bool:
    """Case-insensitive substring match on the top-level ancestor's name.

    Nodes deeper than the server's children inherit the verdict of their
    ancestor; the server itself always matches.
    """
    if not text:
        return True
    needle = text.lower()
    while node is not None:
        if node.type == ObjectType.SERVER:
            return True
        parent = node.parent
        if parent is None or parent.type == ObjectType.SERVER:
            return needle in (node.name or "").lower()
        node = parent
    return True


def matches(
    node: RemoteObject,
    group: Optional[Group] = None,
    owner: Optional[Owner] = None,
    text: Optional[str] = None,
) -> bool:
    return _group_matches(node, group) and _owner_matches(node, owner) and matches_text(node, text)


def filter_nodes(
    nodes: Iterable[RemoteObject],
    group: Optional[Group] = None,
    owner: Optional[Owner] = None,
    text: Optional[str] = None,
) -> List[RemoteObject]:
    return [node for node in nodes if matches(node, group, owner, text)]
