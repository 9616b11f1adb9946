from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from omero_browser.base import RemoteRepository
from omero_browser.model import ObjectRef, Owner


class AnnotationKind(Enum):
    TAG = "tag"
    MAP = "map"
    FILE = "file"
    COMMENT = "comment"
    RATING = "rating"
    UNKNOWN = "unknown"

    @classmethod
    def from_string(cls, text: Optional[str]) -> "AnnotationKind":
        wanted = (text or "").strip().lower()
        if wanted == "attachment":
            return cls.FILE
        for member in cls:
            if member.value == wanted:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class Annotation:
    """One annotation linked to an object; ``kind`` says which fields are set."""

    kind: AnnotationKind
    id: int
    owner: Optional[Owner] = None
    text: str = ""
    pairs: Tuple[Tuple[str, str], ...] = ()
    file_name: str = ""
    mime_type: str = ""
    file_size: int = 0
    rating: int = 0

    @property
    def n_fields(self) -> int:
        if self.kind is AnnotationKind.MAP:
            return len(self.pairs)
        return 1

    @classmethod
    def from_json(cls, kind: AnnotationKind, payload: Dict[str, Any]) -> "Annotation":
        owner_payload = payload.get("owner")
        owner = Owner.from_json(owner_payload) if isinstance(owner_payload, dict) else None
        common = {"kind": kind, "id": int(payload.get("id", -1)), "owner": owner}
        if kind is AnnotationKind.MAP:
            values = payload.get("values") or []
            return cls(pairs=tuple((str(k), str(v)) for k, v in values), **common)
        if kind is AnnotationKind.FILE:
            file_info = payload.get("file") or {}
            return cls(
                file_name=str(file_info.get("name", "")),
                mime_type=str(file_info.get("mimetype", "")),
                file_size=int(file_info.get("size", 0) or 0),
                **common,
            )
        if kind is AnnotationKind.RATING:
            return cls(rating=int(payload.get("longValue", 0) or 0), **common)
        return cls(text=str(payload.get("textValue", "")), **common)


@dataclass
class AnnotationSet:
    kind: AnnotationKind
    annotations: List[Annotation] = field(default_factory=list)

    @property
    def size(self) -> int:
        """Number of fields over all annotations (a map counts each pair)."""
        return sum(a.n_fields for a in self.annotations)

    def __iter__(self):
        return iter(self.annotations)

    def __len__(self) -> int:
        return len(self.annotations)


def read_annotations(repository: RemoteRepository, ref: ObjectRef, kind: AnnotationKind) -> AnnotationSet:
    if kind is AnnotationKind.UNKNOWN:
        return AnnotationSet(kind)
    records = repository.read_annotations(ref, kind.value)
    return AnnotationSet(kind, [Annotation.from_json(kind, r) for r in records])
