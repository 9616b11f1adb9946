from __future__ import annotations

import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ObjectType(Enum):
    """Discriminant of a hierarchy node. Declaration order is the display order."""

    SERVER = "Server"
    PROJECT = "Project"
    DATASET = "Dataset"
    SCREEN = "Screen"
    PLATE = "Plate"
    PLATE_ACQUISITION = "Plate acquisition"
    WELL = "Well"
    IMAGE = "Image"
    ORPHANED_FOLDER = "Orphaned Folder"
    UNKNOWN = "Unknown"

    @classmethod
    def from_string(cls, text: Optional[str]) -> "ObjectType":
        if not text:
            return cls.UNKNOWN
        wanted = text.replace("_", "").replace(" ", "").lower()
        for member in cls:
            if wanted in (member.value.replace(" ", "").lower(), member.name.replace("_", "").lower()):
                return member
        return cls.UNKNOWN

    @property
    def order(self) -> int:
        return list(ObjectType).index(self)

    @property
    def uri_name(self) -> str:
        """Lower-case name used by the web client in ``show=<type>-<id>``."""
        if self in (ObjectType.SERVER, ObjectType.ORPHANED_FOLDER, ObjectType.UNKNOWN):
            raise ValueError(f"{self.value} has no web client link")
        if self is ObjectType.PLATE_ACQUISITION:
            return "acquisition"
        return self.value.lower()

    @property
    def is_container(self) -> bool:
        return self in CONTAINER_TYPES


CONTAINER_TYPES = frozenset(
    {ObjectType.PROJECT, ObjectType.DATASET, ObjectType.SCREEN, ObjectType.PLATE, ObjectType.WELL}
)


@dataclass(frozen=True, eq=False)
class Owner:
    """An experimenter. Equality is by id only."""

    id: int
    display_name: str
    username: str = ""
    email: str = ""
    institution: str = ""

    @property
    def is_all_members(self) -> bool:
        return self.id == ALL_MEMBERS.id

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Owner) and other.id == self.id

    def __hash__(self) -> int:
        return hash(("owner", self.id))

    def __str__(self) -> str:
        parts = [f"Owner: {self.display_name}", self.email, self.institution, self.username]
        return ", ".join(p for p in parts if p)

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "Owner":
        first = payload.get("FirstName") or ""
        middle = payload.get("MiddleName") or ""
        last = payload.get("LastName") or ""
        name = " ".join(p for p in (first, middle, last) if p)
        return cls(
            id=int(payload.get("@id", payload.get("id", -1))),
            display_name=name or str(payload.get("UserName", "")),
            username=str(payload.get("UserName") or ""),
            email=str(payload.get("Email") or ""),
            institution=str(payload.get("Institution") or ""),
        )


@dataclass(frozen=True, eq=False)
class Group:
    """An experimenter group. Equality is by id only."""

    id: int
    display_name: str

    @property
    def is_all_groups(self) -> bool:
        return self.id == ALL_GROUPS.id

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Group) and other.id == self.id

    def __hash__(self) -> int:
        return hash(("group", self.id))

    def __lt__(self, other: "Group") -> bool:
        return self.display_name < other.display_name

    def __str__(self) -> str:
        return self.display_name

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "Group":
        return cls(
            id=int(payload.get("@id", payload.get("id", -1))),
            display_name=str(payload.get("Name", payload.get("name", ""))),
        )


# Sentinels that widen a query instead of restricting it
ALL_MEMBERS = Owner(id=-1, display_name="All members")
ALL_GROUPS = Group(id=-1, display_name="All groups")


@dataclass(frozen=True)
class PhysicalSize:
    symbol: str = ""
    value: float = -1.0

    @classmethod
    def from_json(cls, payload: Optional[Dict[str, Any]]) -> "PhysicalSize":
        if not payload:
            return cls()
        return cls(symbol=str(payload.get("Symbol", "")), value=float(payload.get("Value", -1)))


@dataclass(frozen=True)
class ImageInfo:
    """Pixel description carried by Image nodes."""

    width: int = 0
    height: int = 0
    size_c: int = 0
    size_z: int = 0
    size_t: int = 0
    physical_size_x: PhysicalSize = PhysicalSize()
    physical_size_y: PhysicalSize = PhysicalSize()
    physical_size_z: PhysicalSize = PhysicalSize()
    pixel_type: str = ""
    acquisition_date: Optional[int] = None

    @property
    def dimensions(self) -> List[int]:
        return [self.width, self.height, self.size_c, self.size_z, self.size_t]

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "ImageInfo":
        pixels = payload.get("Pixels") or {}
        pixel_type = pixels.get("Type") or {}
        date = payload.get("AcquisitionDate")
        return cls(
            width=int(pixels.get("SizeX", 0)),
            height=int(pixels.get("SizeY", 0)),
            size_c=int(pixels.get("SizeC", 0)),
            size_z=int(pixels.get("SizeZ", 0)),
            size_t=int(pixels.get("SizeT", 0)),
            physical_size_x=PhysicalSize.from_json(pixels.get("PhysicalSizeX")),
            physical_size_y=PhysicalSize.from_json(pixels.get("PhysicalSizeY")),
            physical_size_z=PhysicalSize.from_json(pixels.get("PhysicalSizeZ")),
            pixel_type=str(pixel_type.get("value", "")) if isinstance(pixel_type, dict) else str(pixel_type),
            acquisition_date=int(date) if date is not None else None,
        )


@dataclass(frozen=True)
class ObjectRef:
    """What the remote repository needs to address one object."""

    type: ObjectType
    id: int


def well_name(row: int, column: int) -> str:
    """Row letter followed by the 1-based, zero-padded column: (1, 11) -> 'B12'."""
    return f"{chr(row + 65)}{column + 1:02d}"


class RemoteObject:
    """One node of the remote hierarchy.

    A closed set of variants discriminated by ``type``. Variant payloads:
    ``image`` for IMAGE nodes, ``images`` for ORPHANED_FOLDER nodes and
    ``url`` for the SERVER root. The parent is held weakly; the node never
    keeps its parent alive.
    """

    ORPHANED_DESCRIPTION = "This is a virtual container with orphaned images. These images are not linked anywhere."

    def __init__(
        self,
        id: int,
        type: ObjectType,
        name: str,
        *,
        owner: Optional[Owner] = None,
        group: Optional[Group] = None,
        description: Optional[str] = None,
        child_count: int = 0,
        parent: Optional["RemoteObject"] = None,
        image: Optional[ImageInfo] = None,
        images: Optional[List["RemoteObject"]] = None,
        url: Optional[str] = None,
    ) -> None:
        self.id = int(id)
        self.type = type
        self.name = name
        self.owner = owner
        self.group = group
        self.description = description
        self.child_count = int(child_count)
        self.image = image
        self.images: List[RemoteObject] = list(images or [])
        self.url = url
        self._parent_ref = weakref.ref(parent) if parent is not None else None

    # ---- Constructors for the synthesized variants ----
    @classmethod
    def server(cls, url: str) -> "RemoteObject":
        return cls(-1, ObjectType.SERVER, "", description="", url=url)

    @classmethod
    def orphaned_folder(
        cls,
        parent: "RemoteObject",
        owner: Optional[Owner],
        group: Optional[Group],
        images: Optional[List["RemoteObject"]] = None,
    ) -> "RemoteObject":
        return cls(
            -1,
            ObjectType.ORPHANED_FOLDER,
            "Orphaned Images",
            owner=owner if owner is not None else ALL_MEMBERS,
            group=group,
            description=cls.ORPHANED_DESCRIPTION,
            parent=parent,
            images=images,
        )

    @classmethod
    def from_json(
        cls,
        payload: Dict[str, Any],
        parent: Optional["RemoteObject"] = None,
        group: Optional[Group] = None,
    ) -> "RemoteObject":
        """Build a node from an OMERO JSON API object (``@id``/``@type`` form)."""
        type_url = str(payload.get("@type", ""))
        obj_type = ObjectType.from_string(type_url.rsplit("#", 1)[-1])
        details = payload.get("omero:details") or {}
        owner_payload = details.get("owner")
        group_payload = details.get("group")
        owner = Owner.from_json(owner_payload) if owner_payload else None
        if group_payload:
            group = Group.from_json(group_payload)

        name = str(payload.get("Name") or "")
        child_count = int(payload.get("omero:childCount", 0) or 0)
        image = None
        if obj_type == ObjectType.WELL:
            name = well_name(int(payload.get("Row", 0)), int(payload.get("Column", 0)))
            child_count = len(payload.get("WellSamples") or []) or child_count
        elif obj_type == ObjectType.IMAGE:
            image = ImageInfo.from_json(payload)
        elif obj_type == ObjectType.PLATE_ACQUISITION:
            child_count = 0

        return cls(
            int(payload.get("@id", -1)),
            obj_type,
            name,
            owner=owner,
            group=group,
            description=payload.get("Description"),
            child_count=child_count,
            parent=parent,
            image=image,
        )

    # ---- Accessors ----
    @property
    def parent(self) -> Optional["RemoteObject"]:
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def ref(self) -> ObjectRef:
        return ObjectRef(self.type, self.id)

    @property
    def n_children(self) -> int:
        if self.type == ObjectType.ORPHANED_FOLDER:
            return len(self.images)
        return self.child_count

    @property
    def is_leaf(self) -> bool:
        """Leafness judged from the server-reported child count, without a fetch."""
        if self.type == ObjectType.SERVER:
            return False
        if self.type == ObjectType.IMAGE:
            return True
        return self.n_children == 0

    def add_orphaned_images(self, images: List["RemoteObject"]) -> None:
        if self.type != ObjectType.ORPHANED_FOLDER:
            raise TypeError(f"{self.type.value} nodes do not hold orphaned images")
        self.images.extend(images)

    @property
    def class_name(self) -> str:
        return "Omero" + self.type.value.title().replace(" ", "")

    def _extra_fields(self) -> dict[str, object]:
        extra: dict[str, object] = {}
        if self.type == ObjectType.IMAGE and self.image is not None:
            extra["dimensions"] = self.image.dimensions
            extra["pixel_type"] = self.image.pixel_type
            extra["physical_sizes"] = [
                {"symbol": p.symbol, "value": p.value}
                for p in (self.image.physical_size_x, self.image.physical_size_y, self.image.physical_size_z)
            ]
            if self.image.acquisition_date is not None:
                extra["acquisition_date"] = self.image.acquisition_date
        elif self.type == ObjectType.ORPHANED_FOLDER:
            extra["images"] = [img.id for img in self.images]
        elif self.type == ObjectType.SERVER:
            extra["url"] = self.url
        return extra

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "class": self.class_name,
            "id": self.id,
            "title": self.name,
            "objects": int(self.n_children),
            "owner": self.owner.id if self.owner is not None else None,
            "group": self.group.id if self.group is not None else None,
        }
        if self.description:
            payload["description"] = self.description
        payload.update(self._extra_fields())
        return payload

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True
        if not isinstance(other, RemoteObject):
            return NotImplemented
        return self.type == other.type and self.id == other.id and self.owner == other.owner

    def __hash__(self) -> int:
        return hash((self.type, self.id, self.owner.id if self.owner is not None else None))

    def __repr__(self) -> str:
        return f"RemoteObject({self.type.value} {self.id} {self.name!r})"
