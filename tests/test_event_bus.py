"""Tests for the in-process event bus — ordering, isolation, unsubscribe."""

import pytest

from conftest import Recorder
from pvedash.events.types import Topic


def test_publish_reaches_subscribers_in_order(bus):
    """Handlers for one topic run in the order they subscribed."""
    calls = []
    bus.subscribe(Topic.ALERT_RECEIVED, lambda p: calls.append(("a", p)))
    bus.subscribe(Topic.ALERT_RECEIVED, lambda p: calls.append(("b", p)))
    bus.subscribe(Topic.ALERT_RECEIVED, lambda p: calls.append(("c", p)))

    delivered = bus.publish(Topic.ALERT_RECEIVED, 7)

    assert delivered == 3
    assert calls == [("a", 7), ("b", 7), ("c", 7)]


def test_publish_without_subscribers_is_dropped(bus):
    assert bus.publish(Topic.SNAPSHOT_UPDATED, {"x": 1}) == 0


def test_topics_are_isolated(bus):
    rec = Recorder()
    bus.subscribe(Topic.LIVE_CONNECTED, rec)
    bus.publish(Topic.LIVE_DISCONNECTED, {})
    assert rec.count == 0


def test_string_topic_names_are_accepted(bus):
    rec = Recorder()
    bus.subscribe("snapshot.updated", rec)
    bus.publish(Topic.SNAPSHOT_UPDATED, "entry")
    assert rec.payloads == ["entry"]


def test_unknown_topic_raises(bus):
    with pytest.raises(ValueError):
        bus.subscribe("snapshot.nope", lambda p: None)
    with pytest.raises(ValueError):
        bus.publish("snapshot.nope")


def test_raising_handler_does_not_stop_siblings(bus):
    """A handler exception is logged; later handlers still run."""
    after = Recorder()

    def broken(_payload):
        raise RuntimeError("handler bug")

    bus.subscribe(Topic.ALERT_RECEIVED, broken)
    bus.subscribe(Topic.ALERT_RECEIVED, after)

    delivered = bus.publish(Topic.ALERT_RECEIVED, "alert")

    assert after.payloads == ["alert"]
    assert delivered == 1


def test_unsubscribe_is_idempotent(bus):
    rec = Recorder()
    unsubscribe = bus.subscribe(Topic.AUTH_CHANGED, rec)

    unsubscribe()
    unsubscribe()

    bus.publish(Topic.AUTH_CHANGED, {"authenticated": False})
    assert rec.count == 0
    assert bus.subscriber_count(Topic.AUTH_CHANGED) == 0


def test_unsubscribe_removes_only_its_own_subscription(bus):
    """Subscribing the same handler twice gives two independent subscriptions."""
    rec = Recorder()
    first = bus.subscribe(Topic.AUTH_CHANGED, rec)
    bus.subscribe(Topic.AUTH_CHANGED, rec)

    first()
    first()
    bus.publish(Topic.AUTH_CHANGED, "x")

    assert rec.payloads == ["x"]
    assert bus.subscriber_count(Topic.AUTH_CHANGED) == 1


def test_unsubscribe_during_dispatch_skips_nobody(bus):
    """A handler that unsubscribes a sibling mid-publish doesn't disturb the rest."""
    calls = []
    unsub_b = None

    def a(_p):
        calls.append("a")
        unsub_b()

    def b(_p):
        calls.append("b")

    def c(_p):
        calls.append("c")

    bus.subscribe(Topic.SNAPSHOT_UPDATED, a)
    unsub_b = bus.subscribe(Topic.SNAPSHOT_UPDATED, b)
    bus.subscribe(Topic.SNAPSHOT_UPDATED, c)

    bus.publish(Topic.SNAPSHOT_UPDATED)
    # b was cancelled before its turn; c still runs exactly once
    assert calls == ["a", "c"]

    calls.clear()
    bus.publish(Topic.SNAPSHOT_UPDATED)
    assert calls == ["a", "c"]


def test_subscribe_during_dispatch_takes_effect_next_publish(bus):
    calls = []

    def late(_p):
        calls.append("late")

    def first(_p):
        calls.append("first")
        bus.subscribe(Topic.SNAPSHOT_UPDATED, late)

    unsub_first = bus.subscribe(Topic.SNAPSHOT_UPDATED, first)
    bus.publish(Topic.SNAPSHOT_UPDATED)
    assert calls == ["first"]

    unsub_first()
    calls.clear()
    bus.publish(Topic.SNAPSHOT_UPDATED)
    assert calls == ["late"]


def test_self_unsubscribe_inside_handler(bus):
    calls = []
    holder = {}

    def once(p):
        calls.append(p)
        holder["unsub"]()

    holder["unsub"] = bus.subscribe(Topic.ALERT_RECEIVED, once)
    bus.publish(Topic.ALERT_RECEIVED, 1)
    bus.publish(Topic.ALERT_RECEIVED, 2)

    assert calls == [1]


def test_clear_drops_everything(bus):
    rec = Recorder()
    unsubscribe = bus.subscribe(Topic.ALERT_RECEIVED, rec)
    bus.clear()
    unsubscribe()
    assert bus.publish(Topic.ALERT_RECEIVED, 1) == 0
    assert rec.count == 0
