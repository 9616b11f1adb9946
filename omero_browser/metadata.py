"""Push local metadata to the remote repository and pull it back."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from omero_browser.base import RemoteRepository
from omero_browser.model import ObjectRef, ObjectType, RemoteObject
from omero_browser.reconcile import (
    KeyValuePlan,
    MergeResult,
    TagPlan,
    UpdatePolicy,
    apply_to_local,
    plan_key_values,
    plan_tags,
)

logger = logging.getLogger(__name__)


@dataclass
class PushReport:
    key_values: Optional[KeyValuePlan] = None
    tags: Optional[TagPlan] = None

    def summary(self) -> str:
        parts = []
        if self.key_values is not None:
            kv = self.key_values
            parts.append(f"key-values: kept {kv.kept}, updated {kv.updated}, added {kv.added}, removed {len(kv.to_delete)}")
        if self.tags is not None:
            parts.append(f"tags: linked {len(self.tags.to_link)}, unlinked {len(self.tags.to_unlink)}")
        return "; ".join(parts) or "nothing pushed"


def split_tags_and_key_values(metadata: Mapping[str, str]) -> Tuple[List[str], Dict[str, str]]:
    """An entry whose value repeats its key (ignoring case) is a tag."""
    tags: List[str] = []
    pairs: Dict[str, str] = {}
    for key, value in metadata.items():
        if value is not None and key.lower() == str(value).lower():
            tags.append(key)
        else:
            pairs[key] = value
    return tags, pairs


def push_key_values(
    repository: RemoteRepository,
    ref: ObjectRef,
    local: Mapping[str, str],
    policy: UpdatePolicy,
) -> KeyValuePlan:
    """Merge ``local`` into the object's key/value pairs.

    Raises:
        ReconciliationAmbiguity: duplicated remote keys under KEEP/UPDATE.
        RepositoryError: a write was rejected.
    """
    if policy is UpdatePolicy.NO_UPDATE:
        return plan_key_values([], {}, policy)
    remote_pairs = repository.read_key_values(ref)
    plan = plan_key_values(remote_pairs, local, policy)
    if plan.to_delete:
        repository.delete_key_values(ref, plan.to_delete)
    if plan.to_write:
        repository.write_key_values(ref, plan.to_write)
    logger.debug("Pushed key-values to %s-%s with %s", ref.type.value, ref.id, policy.name)
    return plan


def push_tags(
    repository: RemoteRepository,
    ref: ObjectRef,
    tags: List[str],
    policy: UpdatePolicy,
) -> TagPlan:
    """Link ``tags`` to the object, reusing the group's tags by name."""
    if policy is UpdatePolicy.NO_UPDATE:
        return plan_tags([], [], policy)
    plan = plan_tags(repository.read_tags(ref), tags, policy)
    for tag_id in plan.to_unlink:
        repository.unlink_tag(ref, tag_id)
    if not plan.to_link:
        return plan

    group_tags: Dict[str, int] = {}
    for tag_id, name in repository.list_group_tags():
        group_tags.setdefault(name.lower(), tag_id)
    for name in plan.to_link:
        tag_id = group_tags.get(name.lower())
        if tag_id is None:
            tag_id = repository.create_tag(name)
            group_tags[name.lower()] = tag_id
        repository.link_tag(ref, tag_id)
    return plan


def push_metadata(
    repository: RemoteRepository,
    ref: ObjectRef,
    metadata: Mapping[str, str],
    kvp_policy: UpdatePolicy = UpdatePolicy.KEEP_KEYS,
    tag_policy: UpdatePolicy = UpdatePolicy.KEEP_KEYS,
) -> PushReport:
    tags, pairs = split_tags_and_key_values(metadata)
    report = PushReport()
    if kvp_policy is not UpdatePolicy.NO_UPDATE:
        report.key_values = push_key_values(repository, ref, pairs, kvp_policy)
    if tag_policy is not UpdatePolicy.NO_UPDATE:
        report.tags = push_tags(repository, ref, tags, tag_policy)
    return report


def pull_metadata(
    repository: RemoteRepository,
    ref: ObjectRef,
    local: Mapping[str, str],
    policy: UpdatePolicy,
    with_tags: bool = True,
) -> Tuple[Dict[str, str], MergeResult]:
    """Remote key/values, and tags as ``name=name`` entries, merged into a copy of ``local``."""
    remote = dict(repository.read_key_values(ref))
    if with_tags:
        for _, name in repository.read_tags(ref):
            remote[name] = name
    return apply_to_local(local, remote, policy)


_HIERARCHY_TYPES = {
    ObjectType.SCREEN: "Screen",
    ObjectType.PLATE: "Plate",
    ObjectType.WELL: "Well",
    ObjectType.PROJECT: "Project",
    ObjectType.DATASET: "Dataset",
}


def parent_hierarchy(node: RemoteObject) -> Dict[str, str]:
    """Names of the containers above ``node``, keyed by container type."""
    fields: Dict[str, str] = {}
    parent = node.parent
    while parent is not None:
        label = _HIERARCHY_TYPES.get(parent.type)
        if label is not None and label not in fields:
            fields[label] = parent.name
        parent = parent.parent
    return fields
