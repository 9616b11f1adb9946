import json

import pytest
import requests

from omero_browser.base import Credentials
from omero_browser.client import OmeroWebClient
from omero_browser.config import BrowserOptions
from omero_browser.errors import AccessError, AuthError, RepositoryError, TransientFetchError
from omero_browser.model import ALL_MEMBERS, Group, ObjectRef, ObjectType, RemoteObject

SERVER = "https://omero.example.org"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b""):
        self.status_code = status_code
        self._payload = payload
        self.content = content

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class StubSession:
    """Stands in for ``requests.Session``; routes by method and path."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, *responses):
        self.routes.setdefault((method, path), []).extend(responses)

    def request(self, method, url, params=None, data=None, headers=None, timeout=None):
        path = url[len(SERVER):]
        self.calls.append((method, path, dict(params or {}), dict(data or {}), dict(headers or {})))
        queue = self.routes.get((method, path))
        if not queue:
            return FakeResponse(404, {})
        response = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def stub():
    return StubSession()


@pytest.fixture
def client(stub):
    return OmeroWebClient(BrowserOptions(server_uri=SERVER + "/webclient/", page_limit=2), session=stub)


def _project(i, name):
    return {
        "@id": i,
        "@type": "http://www.openmicroscopy.org/Schemas/OME/2016-06#Project",
        "Name": name,
        "omero:childCount": 1,
        "omero:details": {"owner": {"@id": 1, "UserName": "alice"}, "group": {"@id": 3, "Name": "Lab"}},
    }


def test_base_url_is_cleaned(client):
    assert client.base_url == SERVER


@pytest.mark.parametrize(
    "status, error",
    [(401, AuthError), (403, AccessError), (404, AccessError), (500, TransientFetchError), (400, RepositoryError)],
)
def test_http_errors_are_mapped(client, stub, status, error):
    stub.add("GET", "/api/v0/m/projects/1/datasets/", FakeResponse(status, {}))
    project = RemoteObject(1, ObjectType.PROJECT, "P", child_count=1)
    with pytest.raises(error):
        client.fetch_children(project, None, None)


def test_connection_errors_are_transient(client, stub):
    stub.add("GET", "/webclient/keepalive_ping/", requests.exceptions.ConnectionError("refused"))
    with pytest.raises(TransientFetchError):
        client.is_alive(None)


def test_invalid_json_is_transient(client, stub):
    stub.add("GET", "/webclient/api/tags/", FakeResponse(200, None))
    with pytest.raises(TransientFetchError):
        client.list_group_tags()


def test_listing_follows_pagination(client, stub):
    stub.add(
        "GET",
        "/api/v0/m/projects/",
        FakeResponse(200, {"data": [_project(1, "a"), _project(2, "b")], "meta": {"totalCount": 3}}),
        FakeResponse(200, {"data": [_project(3, "c")], "meta": {"totalCount": 3}}),
    )
    stub.add("GET", "/api/v0/m/screens/", FakeResponse(200, {"data": [], "meta": {"totalCount": 0}}))
    stub.add("GET", "/api/v0/m/datasets/", FakeResponse(200, {"data": [], "meta": {"totalCount": 0}}))
    stub.add("GET", "/api/v0/m/plates/", FakeResponse(200, {"data": [], "meta": {"totalCount": 0}}))
    server = RemoteObject.server(SERVER)

    children = client.fetch_children(server, Group(3, "Lab"), ALL_MEMBERS)
    assert [c.id for c in children] == [1, 2, 3]
    assert all(c.type is ObjectType.PROJECT and c.parent is server for c in children)

    offsets = [call[2]["offset"] for call in stub.calls if call[1] == "/api/v0/m/projects/"]
    assert offsets == [0, 2]
    first = stub.calls[0][2]
    assert first["group"] == 3
    assert "owner" not in first
    orphaned = [call[2] for call in stub.calls if call[1] == "/api/v0/m/datasets/"]
    assert orphaned[0]["orphaned"] == "true"


def test_well_children_come_from_well_samples(client, stub):
    stub.add("GET", "/api/v0/m/wells/9/", FakeResponse(200, {"data": {
        "@id": 9,
        "WellSamples": [
            {"Image": {"@id": 40, "@type": "#Image", "Name": "field 1"}},
            {"Image": {"@id": 41, "@type": "#Image", "Name": "field 2"}},
        ],
    }}))
    well = RemoteObject(9, ObjectType.WELL, "A01", child_count=2)
    assert [c.id for c in client.fetch_children(well, None, None)] == [40, 41]


def test_login_parses_event_context(client, stub):
    stub.add("GET", "/api/v0/token/", FakeResponse(200, {"data": "csrf-123"}))
    stub.add("GET", "/api/v0/servers/", FakeResponse(200, {"data": [{"id": 1}]}))
    stub.add("POST", "/api/v0/login/", FakeResponse(200, {"success": True, "eventContext": {
        "userId": 1, "userName": "alice", "groupId": 3, "groupName": "Lab",
        "isAdmin": False, "memberOfGroups": [1, 3],
    }}))
    stub.add("GET", "/api/v0/m/experimenters/1/", FakeResponse(200, {"data": {
        "@id": 1, "FirstName": "Alice", "LastName": "Smith", "UserName": "alice",
    }}))

    handle = client.login(Credentials(SERVER, "alice", "secret"))
    assert handle.user.display_name == "Alice Smith"
    assert handle.default_group == Group(3, "Lab")
    assert handle.member_of == [1, 3]
    login_call = [c for c in stub.calls if c[1] == "/api/v0/login/"][0]
    assert login_call[4]["X-CSRFToken"] == "csrf-123"
    assert login_call[3]["username"] == "alice"


def test_login_rejected(client, stub):
    stub.add("GET", "/api/v0/token/", FakeResponse(200, {"data": "csrf-123"}))
    stub.add("GET", "/api/v0/servers/", FakeResponse(200, {"data": [{"id": 1}]}))
    stub.add("POST", "/api/v0/login/", FakeResponse(403, {"message": "Login failed"}))
    with pytest.raises(AuthError) as info:
        client.login(Credentials(SERVER, "alice", "wrong"))
    assert info.value.reason == "bad_credentials"


def test_login_against_wrong_server(client, stub):
    with pytest.raises(AuthError) as info:
        client.login(Credentials(SERVER, "alice", "secret"))
    assert info.value.reason == "bad_url"


def test_write_key_values_updates_in_place_and_appends(client, stub):
    ref = ObjectRef(ObjectType.IMAGE, 5)
    stub.add("GET", "/webclient/api/annotations/", FakeResponse(200, {
        "annotations": [{"id": 70, "values": [["a", "1"], ["b", "2"]]}],
        "experimenters": [],
    }))
    stub.add("POST", "/webclient/annotate_map/", FakeResponse(200, {"annId": 70}))

    client.write_key_values(ref, {"b": "3", "c": "4"})

    posts = [c[3] for c in stub.calls if c[0] == "POST"]
    assert posts[0]["annId"] == 70
    assert json.loads(posts[0]["mapAnnotation"]) == [["a", "1"], ["b", "3"]]
    assert "annId" not in posts[1]
    assert json.loads(posts[1]["mapAnnotation"]) == [["c", "4"]]
    assert posts[0]["image"] == 5


def test_read_tags_and_key_values(client, stub):
    ref = ObjectRef(ObjectType.DATASET, 8)

    stub.add("GET", "/webclient/api/annotations/", FakeResponse(200, {
        "annotations": [
            {"id": 1, "values": [["a", "1"]], "textValue": "red"},
            {"id": 2, "values": [["a", "2"]], "textValue": "blue"},
        ],
    }))
    assert client.read_key_values(ref) == [("a", "1"), ("a", "2")]
    assert client.read_tags(ref) == [(1, "red"), (2, "blue")]
    assert stub.calls[0][2] == {"type": "map", "dataset": 8}


def test_thumbnail_bytes(client, stub):
    stub.add("GET", "/webgateway/render_thumbnail/5/96/", FakeResponse(200, None, b"\x89PNG"))
    assert client.fetch_thumbnail(5, 96) == b"\x89PNG"
