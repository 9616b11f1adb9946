from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from omero_browser.base import Credentials, RemoteRepository, SessionHandle
from omero_browser.config import BrowserOptions
from omero_browser.errors import (
    AccessError,
    AuthError,
    BrowserError,
    RepositoryError,
    TransientFetchError,
)
from omero_browser.model import Group, ObjectRef, ObjectType, Owner, RemoteObject
from omero_browser.uris import server_uri

logger = logging.getLogger(__name__)

API = "/api/v0"

# Listing endpoints per parent type
_CHILD_ENDPOINTS = {
    ObjectType.PROJECT: "/m/projects/{id}/datasets/",
    ObjectType.DATASET: "/m/datasets/{id}/images/",
    ObjectType.SCREEN: "/m/screens/{id}/plates/",
    ObjectType.PLATE: "/m/plates/{id}/wells/",
}

_SERVER_ENDPOINTS = (
    ("/m/projects/", {}),
    ("/m/screens/", {}),
    ("/m/datasets/", {"orphaned": "true"}),
    ("/m/plates/", {"orphaned": "true"}),
)


def build_session(options: BrowserOptions) -> requests.Session:
    """A ``requests`` session that retries idempotent calls on gateway errors."""
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset({"GET", "HEAD"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.verify = options.verify_ssl
    if not options.verify_ssl:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    return session


class OmeroWebClient(RemoteRepository):
    """Remote repository over the OMERO JSON API and web client endpoints."""

    def __init__(self, options: BrowserOptions, session: Optional[requests.Session] = None):
        base_url = server_uri(options.server_uri)
        if base_url is None:
            raise AuthError("bad_url", f"Not a server address: {options.server_uri!r}")
        self.options = options
        self.base_url = base_url
        self.session = session if session is not None else build_session(options)
        self.headers = {"Accept": "application/json"}
        self._csrf_token: Optional[str] = None

    # ---- Transport ----
    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        expect_json: bool = True,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = dict(self.headers)
        if method != "GET" and self._csrf_token:
            headers["X-CSRFToken"] = self._csrf_token
            headers["Referer"] = self.base_url + "/"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                data=data,
                headers=headers,
                timeout=self.options.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransientFetchError(f"{method} {path} failed: {e}") from e

        status = response.status_code
        if status == 401:
            raise AuthError("bad_credentials", f"{method} {path}: not logged in")
        if status == 403:
            raise AccessError(f"{method} {path}: permission denied")
        if status == 404:
            raise AccessError(f"{method} {path}: not found")
        if status >= 500:
            raise TransientFetchError(f"{method} {path}: server error {status}")
        if status >= 400:
            raise RepositoryError(f"{method} {path}: request rejected ({status})")
        if not expect_json:
            return response
        try:
            return response.json()
        except ValueError as e:
            raise TransientFetchError(f"{method} {path}: invalid JSON in response") from e

    def _paginate(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        """Every item of a paginated JSON API listing."""
        query = dict(params or {})
        limit = self.options.page_limit
        offset = 0
        while True:
            query.update({"offset": offset, "limit": limit})
            payload = self._request("GET", API + path, params=query)
            items = payload.get("data") or []
            yield from items
            total = int((payload.get("meta") or {}).get("totalCount", len(items)))
            offset += limit
            if not items or offset >= total:
                return

    @staticmethod
    def _scope(group: Optional[Group], owner: Optional[Owner]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"childCount": "true"}
        if owner is not None and not owner.is_all_members:
            params["owner"] = owner.id
        if group is not None and not group.is_all_groups:
            params["group"] = group.id
        return params

    # ---- Session ----
    def login(self, credentials: Credentials) -> SessionHandle:
        try:
            self._csrf_token = self._request("GET", API + "/token/")["data"]
            servers = self._request("GET", API + "/servers/").get("data") or []
        except TransientFetchError as e:
            raise AuthError("unreachable", str(e)) from e
        except (AccessError, RepositoryError, KeyError, TypeError) as e:
            raise AuthError("bad_url", f"{self.base_url} does not look like an OMERO server") from e

        data = {
            "username": credentials.username,
            "password": credentials.password,
            "server": servers[0]["id"] if servers else 1,
        }
        try:
            payload = self._request("POST", API + "/login/", data=data)
        except TransientFetchError as e:
            raise AuthError("unreachable", str(e)) from e
        except (AccessError, RepositoryError) as e:
            raise AuthError("bad_credentials", str(e)) from e

        if not payload.get("success", True) or "eventContext" not in payload:
            raise AuthError("bad_credentials", payload.get("message"))
        context = payload["eventContext"]
        user = Owner(
            id=int(context["userId"]),
            display_name=str(context.get("userName", credentials.username)),
            username=str(context.get("userName", credentials.username)),
        )
        try:
            details = self._request("GET", f"{API}/m/experimenters/{user.id}/").get("data")
            if details:
                user = Owner.from_json(details)
        except BrowserError as e:
            logger.debug("Could not read experimenter %s: %s", user.id, e)

        member_of = [int(g) for g in context.get("memberOfGroups", [])]
        if not member_of:
            raise AuthError("no_access", f"{credentials.username} is not a member of any group")
        return SessionHandle(
            user=user,
            default_group=Group(int(context["groupId"]), str(context.get("groupName", context["groupId"]))),
            is_admin=bool(context.get("isAdmin", False)),
            member_of=member_of,
            token=context.get("sessionUuid"),
        )

    def switch_group(self, handle: SessionHandle, group_id: int) -> None:
        self._request("POST", "/webclient/active_group/", data={"active_group": group_id}, expect_json=False)

    def logout(self, handle: SessionHandle) -> None:
        self._request("POST", "/webclient/logout/", expect_json=False)
        self._csrf_token = None

    def is_alive(self, handle: SessionHandle) -> bool:
        response = self._request("GET", "/webclient/keepalive_ping/", expect_json=False)
        return response.status_code == 200

    # ---- Hierarchy ----
    def fetch_children(self, parent: RemoteObject, group: Optional[Group], owner: Optional[Owner]) -> List[RemoteObject]:
        params = self._scope(group, owner)
        if parent.type == ObjectType.SERVER:
            children: List[RemoteObject] = []
            for path, extra in _SERVER_ENDPOINTS:
                items = self._paginate(path, {**params, **extra})
                children.extend(RemoteObject.from_json(item, parent, group) for item in items)
            return children
        if parent.type == ObjectType.WELL:
            well = self._request("GET", f"{API}/m/wells/{parent.id}/", params=params).get("data") or {}
            samples = well.get("WellSamples") or []
            return [
                RemoteObject.from_json(sample["Image"], parent, group)
                for sample in samples
                if sample.get("Image")
            ]
        endpoint = _CHILD_ENDPOINTS.get(parent.type)
        if endpoint is None:
            return []
        return [RemoteObject.from_json(item, parent, group) for item in self._paginate(endpoint.format(id=parent.id), params)]

    def fetch_orphaned_images(self, server: RemoteObject, group: Optional[Group], owner: Optional[Owner]) -> List[RemoteObject]:
        params = {**self._scope(group, owner), "orphaned": "true"}
        return [RemoteObject.from_json(item, server, group) for item in self._paginate("/m/images/", params)]

    # ---- Groups and owners ----
    def list_groups(self, user_id: int, admin: bool) -> List[Group]:
        path = "/m/experimentergroups/" if admin else f"/m/experimenters/{user_id}/experimentergroups/"
        return [Group.from_json(item) for item in self._paginate(path)]

    def list_group_members(self, group_id: int) -> List[Owner]:
        return [Owner.from_json(item) for item in self._paginate(f"/m/experimentergroups/{group_id}/experimenters/")]

    # ---- Annotations ----
    def read_annotations(self, ref: ObjectRef, kind: str) -> List[Dict]:
        params = {"type": kind, ref.type.uri_name: ref.id}
        payload = self._request("GET", "/webclient/api/annotations/", params=params)
        experimenters = {e.get("id"): e for e in payload.get("experimenters") or []}
        records = []
        for annotation in payload.get("annotations") or []:
            owner = (annotation.get("owner") or {}).get("id")
            if owner in experimenters:
                exp = experimenters[owner]
                annotation = {**annotation, "owner": {
                    "@id": owner,
                    "FirstName": exp.get("firstName"),
                    "LastName": exp.get("lastName"),
                    "UserName": exp.get("omeName"),
                }}
            records.append(annotation)
        return records

    def _map_annotations(self, ref: ObjectRef) -> List[Tuple[int, List[Tuple[str, str]]]]:
        return [
            (int(a["id"]), [(str(k), str(v)) for k, v in a.get("values") or []])
            for a in self.read_annotations(ref, "map")
        ]

    def _save_map(self, ref: ObjectRef, pairs: List[Tuple[str, str]], annotation_id: Optional[int] = None) -> None:
        data: Dict[str, Any] = {
            ref.type.uri_name: ref.id,
            "mapAnnotation": json.dumps([[k, v] for k, v in pairs]),
        }
        if annotation_id is not None:
            data["annId"] = annotation_id
        self._request("POST", "/webclient/annotate_map/", data=data)

    def read_key_values(self, ref: ObjectRef) -> List[Tuple[str, str]]:
        pairs: List[Tuple[str, str]] = []
        for _, values in self._map_annotations(ref):
            pairs.extend(values)
        return pairs

    def write_key_values(self, ref: ObjectRef, pairs: Dict[str, str]) -> None:
        remaining = dict(pairs)
        for annotation_id, values in self._map_annotations(ref):
            updated = [(k, pairs.get(k, v)) for k, v in values]
            for k, _ in values:
                remaining.pop(k, None)
            if updated != values:
                self._save_map(ref, updated, annotation_id)
        if remaining:
            self._save_map(ref, list(remaining.items()))

    def delete_key_values(self, ref: ObjectRef, keys: Sequence[str]) -> None:
        doomed = set(keys)
        for annotation_id, values in self._map_annotations(ref):
            kept = [(k, v) for k, v in values if k not in doomed]
            if len(kept) != len(values):
                # An empty map deletes the annotation
                self._save_map(ref, kept, annotation_id)

    def read_tags(self, ref: ObjectRef) -> List[Tuple[int, str]]:
        return [(int(a["id"]), str(a.get("textValue", ""))) for a in self.read_annotations(ref, "tag")]

    def link_tag(self, ref: ObjectRef, tag_id: int) -> None:
        linked = [tag for tag, _ in self.read_tags(ref)]
        if tag_id in linked:
            return
        data = {ref.type.uri_name: ref.id, "tags": ",".join(str(t) for t in linked + [tag_id])}
        self._request("POST", "/webclient/annotate_tags/", data=data, expect_json=False)

    def unlink_tag(self, ref: ObjectRef, tag_id: int) -> None:
        data = {"parent": f"{ref.type.uri_name}-{ref.id}"}
        self._request("POST", f"/webclient/action/remove/tag/{tag_id}/", data=data, expect_json=False)

    def list_group_tags(self) -> List[Tuple[int, str]]:
        payload = self._request("GET", "/webclient/api/tags/")
        return [(int(t["id"]), str(t.get("value", ""))) for t in payload.get("tags") or []]

    def create_tag(self, name: str) -> int:
        payload = self._request(
            "POST",
            "/webclient/action/addnewcontainer/",
            data={"folder_type": "tag", "name": name, "description": ""},
        )
        try:
            return int(payload["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise RepositoryError(f"Creating tag {name!r} returned no id") from e

    # ---- Assets ----
    def fetch_thumbnail(self, image_id: int, size: int) -> bytes:
        response = self._request("GET", f"/webgateway/render_thumbnail/{image_id}/{size}/", expect_json=False)
        return response.content
