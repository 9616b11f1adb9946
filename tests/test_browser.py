import threading

import pytest

from omero_browser.browser import OmeroBrowser
from omero_browser.cache import cache_key
from omero_browser.config import BrowserOptions
from omero_browser.events import CHILDREN_READY
from omero_browser.model import ALL_GROUPS, ObjectRef, ObjectType
from omero_browser.reconcile import UpdatePolicy

from conftest import ALICE, IMAGING, LAB, OTHER


@pytest.fixture
def browser(repo):
    options = BrowserOptions(server_uri="https://omero.example.org", username="alice")
    browser = OmeroBrowser.connect(repo, options, "secret")
    yield browser
    browser.loader.shutdown(wait=True)
    browser.thumbnails.shutdown(wait=True)


def _populate(repo):
    repo.server_children[ALICE.id] = [
        (ObjectType.PROJECT, 10, "Confocal project", ALICE, 1),
        (ObjectType.SCREEN, 20, "HCS screen", ALICE, 0),
    ]
    repo.orphans[ALICE.id] = [(1, "stray")]
    repo.children[(ObjectType.PROJECT, 10)] = [(ObjectType.DATASET, 11, "Day 1", ALICE, 2)]
    repo.children[(ObjectType.DATASET, 11)] = [
        (ObjectType.IMAGE, 101, "a.tif", ALICE, 0),
        (ObjectType.IMAGE, 102, "b.tif", ALICE, 0),
    ]


def test_starts_at_the_users_default_selection(browser):
    assert browser.group == LAB
    assert browser.owner == ALICE
    assert browser.root().type is ObjectType.SERVER
    assert browser.session.bus is browser.bus


def test_children_arrive_through_the_bus(repo, browser):
    _populate(repo)
    ready = threading.Event()
    browser.bus.subscribe(CHILDREN_READY, lambda payload: ready.set())
    assert browser.children(browser.root()) == []
    assert ready.wait(5)
    names = [c.name for c in browser.children(browser.root())]
    assert names == ["Confocal project", "HCS screen", "Orphaned Images"]


def test_filter_text_hides_the_orphaned_folder(repo, browser):
    _populate(repo)
    browser.select(text="confocal")
    assert [c.id for c in browser.children_sync(browser.root())] == [10]
    browser.select(text="")
    assert len(browser.children_sync(browser.root())) == 3


def test_group_selection_is_gated(repo, browser):
    browser.select(group=OTHER)
    assert browser.group == LAB
    browser.select(group=IMAGING)
    assert browser.group == IMAGING
    assert repo.switched == [IMAGING.id]
    browser.select(group=ALL_GROUPS)
    assert browser.group == ALL_GROUPS
    assert browser._fetch_group() == IMAGING


def test_image_uris_are_unique(repo, browser):
    _populate(repo)
    project = browser.children_sync(browser.root())[0]
    dataset = browser.children_sync(project)[0]
    assert browser.image_uris([project, dataset]) == [
        "https://omero.example.org/webclient/?show=image-101",
        "https://omero.example.org/webclient/?show=image-102",
    ]
    assert browser.object_uri(dataset) == "https://omero.example.org/webclient/?show=dataset-11"
    assert browser.hierarchy_metadata(browser.children_sync(dataset)[0]) == {
        "Dataset": "Day 1",
        "Project": "Confocal project",
    }


def test_push_and_pull_metadata(repo, browser):
    ref = ObjectRef(ObjectType.IMAGE, 101)
    repo.key_values[ref] = [("stain", "DAPI")]
    report = browser.push_metadata(ref, {"stain": "GFP", "magnification": "63x", "live": "live"})
    assert repo.key_values[ref] == [("stain", "DAPI"), ("magnification", "63x")]
    assert repo.tags[ref] == [(100, "live")]
    assert report.key_values.kept == 1
    assert report.key_values.added == 1

    merged = browser.pull_metadata(ref, {"stain": "local", "note": "x"}, UpdatePolicy.UPDATE_KEYS)
    assert merged == {"stain": "DAPI", "note": "x", "magnification": "63x", "live": "live"}


def test_thumbnail_request(repo, browser):
    _populate(repo)
    image = browser.list_images(browser.children_sync(browser.root())[0])[0]
    assert browser.request_thumbnail(image).result(timeout=5) == b"thumb-101-256"


def test_close_logs_out_and_stops_workers(repo, browser):
    _populate(repo)
    browser.children_sync(browser.root())
    browser.close()
    assert repo.logged_out
    assert browser.loader.closed
    assert len(browser.cache) == 0
    assert browser.children(browser.root()) == []


def test_active_group_can_be_selected_again_after_all_groups(repo, browser):
    browser.select(group=ALL_GROUPS)
    browser.select(group=LAB)
    assert browser.group == LAB
    assert repo.switched == []


def test_close_waits_for_the_running_fetch(repo, browser):
    _populate(repo)
    repo.gate = threading.Event()
    assert browser.children(browser.root()) == []
    release = threading.Timer(0.1, repo.gate.set)
    release.start()
    browser.close()
    release.join()
    assert len(browser.cache) == 0
    assert browser.cache.lookup(cache_key(browser.root(), LAB, ALICE)) is None
