from __future__ import annotations

from typing import Iterable, List, Optional

from omero_browser.model import ALL_MEMBERS, Group, ObjectType, Owner, RemoteObject


def make_orphaned_folder(
    server: RemoteObject,
    owner: Optional[Owner],
    group: Optional[Group],
    images: Iterable[RemoteObject] = (),
) -> RemoteObject:
    """The synthetic container for images that have no dataset or well."""
    folder = RemoteObject.orphaned_folder(server, owner, group)
    folder.add_orphaned_images(list(images))
    return folder


def merge_orphans(
    folders: Iterable[RemoteObject],
    server: RemoteObject,
    group: Optional[Group],
) -> RemoteObject:
    """One folder owned by "all members" holding every input folder's images, in order."""
    merged = make_orphaned_folder(server, ALL_MEMBERS, group)
    for folder in folders:
        merged.add_orphaned_images(folder.images)
    return merged


def fold_orphans(
    children: Iterable[RemoteObject],
    server: RemoteObject,
    group: Optional[Group],
) -> List[RemoteObject]:
    """Replace every orphaned folder in ``children`` by a single merged one.

    The merged folder is appended at the end, and only when some input list
    carried a folder.
    """
    kept: List[RemoteObject] = []
    folders: List[RemoteObject] = []
    for child in children:
        if child.type == ObjectType.ORPHANED_FOLDER:
            folders.append(child)
        else:
            kept.append(child)
    if folders:
        kept.append(merge_orphans(folders, server, group))
    return kept
