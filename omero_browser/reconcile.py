"""Merge engine for key/value and tag metadata.

Everything here is pure: callers read the remote state, ask for a plan, and
apply the plan through a repository (see ``metadata``).
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Sequence, Set, Tuple

from omero_browser.errors import ReconciliationAmbiguity

logger = logging.getLogger(__name__)


class UpdatePolicy(Enum):
    KEEP_KEYS = "keep"
    UPDATE_KEYS = "update"
    DELETE_KEYS = "delete"
    NO_UPDATE = "none"

    @classmethod
    def from_string(cls, text: str) -> "UpdatePolicy":
        wanted = text.strip().lower().replace("-", "_")
        for member in cls:
            if wanted in (member.value, member.name.lower(), member.name.lower().replace("_keys", "")):
                return member
        raise ValueError(f"Unknown update policy: {text}")


@dataclass(frozen=True)
class MergeResult:
    """``existing`` holds the target keys known to the reference, ``new`` the rest."""

    existing: Dict[str, str]
    new: Dict[str, str]

    @property
    def counts(self) -> Tuple[int, int]:
        return len(self.existing), len(self.new)


def split(reference: Mapping[str, str], target: Mapping[str, str]) -> MergeResult:
    """Partition ``target`` by whether each key is present in ``reference``.

    Values always come from ``target``.

    >>> split({"a": "1"}, {"a": "9", "b": "2"})
    MergeResult(existing={'a': '9'}, new={'b': '2'})
    """
    existing: Dict[str, str] = {}
    new: Dict[str, str] = {}
    for key, value in target.items():
        if key in reference:
            existing[key] = value
        else:
            new[key] = value
    return MergeResult(existing=existing, new=new)


def find_duplicate_keys(pairs: Iterable[Tuple[str, str]]) -> List[str]:
    """Keys occurring more than once in a list of remote pairs."""
    counts = Counter(key for key, _ in pairs)
    return sorted(key for key, n in counts.items() if n > 1)


@dataclass
class KeyValuePlan:
    """What to do on the remote side to reach ``result``."""

    policy: UpdatePolicy
    to_delete: List[str] = field(default_factory=list)
    to_write: Dict[str, str] = field(default_factory=dict)
    result: Dict[str, str] = field(default_factory=dict)
    kept: int = 0
    updated: int = 0
    added: int = 0

    @property
    def is_noop(self) -> bool:
        return not self.to_delete and not self.to_write


def plan_key_values(
    remote_pairs: Sequence[Tuple[str, str]],
    local: Mapping[str, str],
    policy: UpdatePolicy,
) -> KeyValuePlan:
    """Compute the remote changes that merge ``local`` into ``remote_pairs``.

    Raises:
        ReconciliationAmbiguity: the remote side holds a key more than once
            and the policy would have to pick one of them.
    """
    plan = KeyValuePlan(policy=policy)
    if policy is UpdatePolicy.NO_UPDATE:
        plan.result = dict(remote_pairs)
        return plan

    if policy in (UpdatePolicy.KEEP_KEYS, UpdatePolicy.UPDATE_KEYS):
        duplicates = find_duplicate_keys(remote_pairs)
        if duplicates:
            logger.error("Remote keys are not unique: %s", ", ".join(duplicates))
            raise ReconciliationAmbiguity(duplicates)

    remote = dict(remote_pairs)
    merge = split(remote, local)

    if policy is UpdatePolicy.KEEP_KEYS:
        plan.to_write = dict(merge.new)
        plan.result = {**remote, **merge.new}
        plan.kept, plan.added = len(merge.existing), len(merge.new)
    elif policy is UpdatePolicy.UPDATE_KEYS:
        plan.to_write = {k: v for k, v in local.items() if remote.get(k) != v}
        plan.result = {**remote, **local}
        plan.updated, plan.added = len(merge.existing), len(merge.new)
    else:
        plan.to_delete = sorted({key for key, _ in remote_pairs})
        plan.to_write = dict(local)
        plan.result = dict(local)
        plan.added = len(local)
    return plan


@dataclass
class TagPlan:
    policy: UpdatePolicy
    to_unlink: List[int] = field(default_factory=list)
    to_link: List[str] = field(default_factory=list)
    result: List[str] = field(default_factory=list)


def plan_tags(
    remote_tags: Sequence[Tuple[int, str]],
    local_tags: Iterable[str],
    policy: UpdatePolicy,
) -> TagPlan:
    """Tags know two policies: DELETE_KEYS unlinks every linked tag first;
    anything else only links the local tags that are not linked yet.
    Names compare without case, as when reusing the group's tags."""
    plan = TagPlan(policy=policy)
    wanted: List[str] = []
    seen: Set[str] = set()
    for name in local_tags:
        if name.lower() not in seen:
            seen.add(name.lower())
            wanted.append(name)
    if policy is UpdatePolicy.NO_UPDATE:
        plan.result = [name for _, name in remote_tags]
        return plan

    if policy is UpdatePolicy.DELETE_KEYS:
        plan.to_unlink = [tag_id for tag_id, _ in remote_tags]
        plan.to_link = wanted
        plan.result = list(wanted)
        return plan

    linked: Set[str] = {name.lower() for _, name in remote_tags}
    plan.to_link = [name for name in wanted if name.lower() not in linked]
    plan.result = [name for _, name in remote_tags] + plan.to_link
    return plan


def apply_to_local(
    local: Mapping[str, str],
    remote: Mapping[str, str],
    policy: UpdatePolicy,
) -> Tuple[Dict[str, str], MergeResult]:
    """Merge remote metadata into a local map (the pull direction).

    Returns the new local map and the split of ``remote`` against ``local``.
    """
    merge = split(local, remote)
    if policy is UpdatePolicy.NO_UPDATE:
        return dict(local), merge
    if policy is UpdatePolicy.KEEP_KEYS:
        return {**local, **merge.new}, merge
    if policy is UpdatePolicy.UPDATE_KEYS:
        return {**local, **merge.existing, **merge.new}, merge
    return dict(remote), merge


__all__ = [
    "UpdatePolicy",
    "MergeResult",
    "KeyValuePlan",
    "TagPlan",
    "split",
    "find_duplicate_keys",
    "plan_key_values",
    "plan_tags",
    "apply_to_local",
]
