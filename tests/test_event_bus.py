from __future__ import annotations

import time

from scribedesk.core.events.bus import EventBus, EventBusConfig, OverflowPolicy
from scribedesk.core.events.models import BaseEvent, SourceSubsystem


def _wait(pred, timeout=2.0):
    end = time.time() + timeout
    while time.time() < end:
        if pred():
            return True
        time.sleep(0.01)
    return pred()


def test_publish_subscribe_multiple_subscribers():
    bus = EventBus(cfg=EventBusConfig(max_queue_size=100), logger=None)
    got1 = []
    got2 = []
    bus.subscribe("record.deleted", lambda ev: got1.append(ev.event_id))
    bus.subscribe("record.*", lambda ev: got2.append(ev.event_id))

    ev = BaseEvent(event_type="record.deleted", source_subsystem=SourceSubsystem.store, payload={"ids": ["a"]})
    bus.publish(ev)
    assert _wait(lambda: got1 and got2)
    assert got1 == [ev.event_id]
    assert got2 == [ev.event_id]
    bus.shutdown(0.5)


def test_handler_exception_isolated():
    bus = EventBus(cfg=EventBusConfig(max_queue_size=100), logger=None)
    ok = {"n": 0}

    def bad(_ev):  # noqa: ANN001
        raise RuntimeError("boom")

    def good(_ev):  # noqa: ANN001
        ok["n"] += 1

    bus.subscribe("policy.saved", bad)
    bus.subscribe("policy.saved", good)
    assert bus.emit("policy.saved", {"user_id": "u1"}, source=SourceSubsystem.store)
    assert _wait(lambda: ok["n"] == 1 and bus.get_stats()["handler_errors_total"] == 1)
    bus.shutdown(0.5)


def test_ordering_preserved_per_subscriber():
    bus = EventBus(cfg=EventBusConfig(max_queue_size=100), logger=None)
    seen = []
    bus.subscribe("*", lambda ev: seen.append(ev.payload["seq"]))
    for i in range(20):
        bus.emit("record.inserted", {"seq": i}, source=SourceSubsystem.store)
    assert _wait(lambda: len(seen) == 20)
    assert seen == list(range(20))
    bus.shutdown(0.5)


def test_synchronous_mode_delivers_inline_and_counts():
    bus = EventBus(cfg=EventBusConfig(synchronous=True), logger=None)
    seen = []
    bus.subscribe("cleanup.*", lambda ev: seen.append(ev.event_type))
    bus.emit("cleanup.completed", {}, source=SourceSubsystem.cleanup)
    bus.emit("record.deleted", {}, source=SourceSubsystem.store)
    assert seen == ["cleanup.completed"]
    stats = bus.get_stats()
    assert stats["published_total"] == 2
    assert stats["delivered_total"] == 1
    assert stats["per_type_published"] == {"cleanup.completed": 1, "record.deleted": 1}
    assert bus.dump_recent(1)[0]["event_type"] == "record.deleted"
    bus.shutdown()


def test_payload_secrets_redacted():
    ev = BaseEvent(event_type="config.saved", source_subsystem=SourceSubsystem.store, payload={"token": "SECRET", "x": 1})
    assert ev.payload == {"token": "***REDACTED***", "x": 1}


def test_unsubscribe_and_disabled_bus():
    bus = EventBus(cfg=EventBusConfig(synchronous=True), logger=None)
    seen = []

    def h(ev):  # noqa: ANN001
        seen.append(ev.event_type)

    bus.subscribe("*", h)
    assert bus.unsubscribe(h) == 1
    bus.emit("record.inserted", {}, source=SourceSubsystem.store)
    assert seen == []

    off = EventBus(cfg=EventBusConfig(enabled=False), logger=None)
    assert off.emit("record.inserted", {}, source=SourceSubsystem.store) is False


def test_publish_after_shutdown_is_dropped():
    bus = EventBus(cfg=EventBusConfig(synchronous=True), logger=None)
    bus.shutdown()
    assert bus.emit("record.inserted", {}, source=SourceSubsystem.store) is False
    assert bus.get_stats()["enabled"] is False


def test_overflow_drop_newest_never_blocks():
    bus = EventBus(cfg=EventBusConfig(max_queue_size=10, overflow_policy=OverflowPolicy.DROP_NEWEST), logger=None)
    release = {"go": False}
    seen = []

    def slow(ev):  # noqa: ANN001
        while not release["go"]:
            time.sleep(0.01)
        seen.append(ev.payload["seq"])

    bus.subscribe("*", slow)
    t0 = time.time()
    for i in range(50):
        bus.emit("record.inserted", {"seq": i}, source=SourceSubsystem.store)
    assert time.time() - t0 < 1.0
    assert bus.get_stats()["dropped_total"] > 0
    release["go"] = True
    assert _wait(lambda: len(seen) >= 10)
    assert seen == sorted(seen)
    bus.shutdown(0.5)
