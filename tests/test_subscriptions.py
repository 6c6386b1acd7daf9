import logging

from nt4_client.nt4_protocol import UidCounter
from nt4_client.subscriptions import SubscriptionOptions, SubscriptionRegistry


def test_add_returns_fresh_uids():

    registry = SubscriptionRegistry(UidCounter(start=100))
    a = registry.add("/a")
    b = registry.add(["/b", "/c"], SubscriptionOptions(prefix=True))

    assert (a.uid, b.uid) == (100, 101)
    assert a.topics == ("/a",)
    assert b.topics == ("/b", "/c")
    assert len(registry) == 2
    assert 101 in registry


def test_subscribe_wire_object():

    registry = SubscriptionRegistry(UidCounter(start=9))
    options = SubscriptionOptions(periodic=0.02, send_all=True, topics_only=False, prefix=True)
    sub = registry.add(["/SmartDashboard/"], options)

    assert sub.to_subscribe_obj() == {
        "topics": ["/SmartDashboard/"],
        "subuid": 9,
        "options": {"periodic": 0.02, "all": True, "topicsonly": False, "prefix": True},
    }
    assert sub.to_unsubscribe_obj() == {"subuid": 9}


def test_default_options():

    assert SubscriptionOptions().to_obj() == {
        "periodic": 0.1,
        "all": False,
        "topicsonly": False,
        "prefix": False,
    }


def test_remove(caplog):

    registry = SubscriptionRegistry()
    sub = registry.add("/a")

    assert registry.remove(sub.uid) is sub
    assert registry.get(sub.uid) is None

    with caplog.at_level(logging.WARNING):
        assert registry.remove(sub.uid) is None
    assert "does not exist" in caplog.text


def test_clear():

    registry = SubscriptionRegistry()
    registry.add("/a")
    registry.add("/b")
    registry.clear()
    assert registry.subscriptions == []
