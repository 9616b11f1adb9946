import pytest

from omero_browser.events import CHILDREN_READY, GROUP_CHANGED, EventBus, QueueDispatcher


def test_failing_subscriber_does_not_stop_delivery():
    bus = EventBus()
    seen = []

    def broken(payload):
        raise RuntimeError("subscriber bug")

    bus.subscribe(CHILDREN_READY, broken)
    bus.subscribe(CHILDREN_READY, seen.append)
    bus.publish(CHILDREN_READY, "payload")
    assert seen == ["payload"]


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(GROUP_CHANGED, seen.append)
    bus.publish(GROUP_CHANGED, 1)
    unsubscribe()
    unsubscribe()
    bus.publish(GROUP_CHANGED, 2)
    assert seen == [1]


def test_topics_are_separate():
    bus = EventBus()
    seen = []
    bus.subscribe(GROUP_CHANGED, seen.append)
    bus.publish(CHILDREN_READY, "ignored")
    assert seen == []


def test_queue_dispatcher_defers_until_drain():
    dispatcher = QueueDispatcher()
    bus = EventBus(dispatcher)
    seen = []
    bus.subscribe(GROUP_CHANGED, seen.append)
    bus.publish(GROUP_CHANGED, "a")
    bus.publish(GROUP_CHANGED, "b")
    assert seen == []
    assert dispatcher.drain() == 2
    assert seen == ["a", "b"]
    assert dispatcher.drain() == 0


def test_unknown_topic():
    with pytest.raises(ValueError):
        EventBus().subscribe("no-such-topic", print)
