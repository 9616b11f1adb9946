from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

from omero_browser.model import ObjectType

logger = logging.getLogger(__name__)

_SHOW_PATTERN = re.compile(r"show=([A-Za-z]+)-(\d+)")
_IMAGE_PATTERNS = [
    re.compile(r"/webgateway/img_detail/(\d+)"),
    re.compile(r"images=(\d+)"),
    re.compile(r"/webclient/img_detail/(\d+)"),
    re.compile(r"img_detail/(\d+)"),
]


def server_uri(uri: Optional[str]) -> Optional[str]:
    """Clean server address of any object URI: ``scheme://host[:port]``.

    The scheme defaults to https. Returns None when nothing usable is left.
    """
    if uri is None:
        return None
    uri = uri.strip()
    if not uri:
        return None
    if "://" not in uri:
        uri = "https://" + uri.lstrip("/")
    try:
        parts = urlsplit(uri)
        host = parts.hostname
        port = parts.port
    except ValueError as e:
        logger.error("Could not parse server from %s: %s", uri, e)
        return None
    if not host:
        return None
    scheme = parts.scheme or "https"
    if ":" in host:
        host = f"[{host}]"
    return f"{scheme}://{host}" + (f":{port}" if port is not None else "")


def object_uri(server: str, obj_type: ObjectType, obj_id: int) -> str:
    """Link to an object in the web client, e.g. ``https://host/webclient/?show=dataset-42``."""
    clean = server_uri(server)
    if clean is None:
        raise ValueError(f"Not a server address: {server!r}")
    return f"{clean}/webclient/?show={obj_type.uri_name}-{int(obj_id)}"


def parse_object_uri(uri: str) -> Tuple[ObjectType, int]:
    """Type and id of the first object an URI points at.

    Understands ``show=<type>-<id>`` links (with ``=`` possibly encoded as
    ``%3D``) and the legacy image viewer links.
    """
    text = uri.replace("%3D", "=").replace("%3d", "=")
    match = _SHOW_PATTERN.search(text)
    if match:
        name = match.group(1).lower()
        obj_type = ObjectType.PLATE_ACQUISITION if name in ("acquisition", "run") else ObjectType.from_string(name)
        if obj_type in (ObjectType.UNKNOWN, ObjectType.SERVER, ObjectType.ORPHANED_FOLDER):
            raise ValueError(f"URI not recognized: {uri}")
        return obj_type, int(match.group(2))
    for pattern in _IMAGE_PATTERNS:
        match = pattern.search(text)
        if match:
            return ObjectType.IMAGE, int(match.group(1))
    raise ValueError(f"URI not recognized: {uri}")


def parse_object_uris(uri: str) -> List[Tuple[ObjectType, int]]:
    """Every ``<type>-<id>`` of a multi-object link (``show=image-1|image-2``)."""
    text = uri.replace("%3D", "=").replace("%3d", "=").replace("%7C", "|").replace("%7c", "|")
    first_type, first_id = parse_object_uri(text)
    refs = [(first_type, first_id)]
    if "show=" not in text:
        return refs
    tail = text.split("show=", 1)[1].split("&", 1)[0]
    for item in tail.split("|")[1:]:
        name, _, ident = item.partition("-")
        if not ident.isdigit():
            continue
        obj_type = ObjectType.PLATE_ACQUISITION if name.lower() in ("acquisition", "run") else ObjectType.from_string(name)
        if obj_type != ObjectType.UNKNOWN:
            refs.append((obj_type, int(ident)))
    return refs
