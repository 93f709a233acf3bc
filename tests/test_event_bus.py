"""Tests for the in-memory event bus."""

import asyncio

import pytest

from netlayer.services.event_bus import EventBus


def test_listeners_run_in_registration_order() -> None:
    bus = EventBus()
    calls = []
    bus.on("tick", lambda data: calls.append(("a", data)))
    bus.on("tick", lambda data: calls.append(("b", data)))
    bus.emit("tick", 1)
    assert calls == [("a", 1), ("b", 1)]


def test_failing_listener_does_not_stop_others(caplog) -> None:
    bus = EventBus()
    calls = []

    def boom(data):
        raise RuntimeError("listener failure")

    bus.on("tick", boom)
    bus.on("tick", calls.append)
    bus.emit("tick", "x")
    assert calls == ["x"]
    assert "listener failure" in caplog.text


def test_unsubscribe_handle_and_off() -> None:
    bus = EventBus()
    calls = []
    unsubscribe = bus.on("tick", calls.append)
    assert bus.listener_count("tick") == 1
    unsubscribe()
    bus.emit("tick", 1)
    assert calls == []
    assert bus.listener_count("tick") == 0
    bus.off("tick", calls.append)  # unknown listener is a no-op


def test_once_fires_a_single_time() -> None:
    bus = EventBus()
    calls = []
    bus.once("tick", calls.append)
    bus.emit("tick", 1)
    bus.emit("tick", 2)
    assert calls == [1]


def test_listener_may_unsubscribe_during_dispatch() -> None:
    bus = EventBus()
    calls = []

    def first(data):
        calls.append("first")
        unsubscribe_second()

    bus.on("tick", first)
    unsubscribe_second = bus.on("tick", lambda data: calls.append("second"))
    bus.emit("tick")
    assert calls == ["first", "second"]
    bus.emit("tick")
    assert calls == ["first", "second", "first"]


@pytest.mark.asyncio
async def test_coroutine_listeners_are_scheduled() -> None:
    bus = EventBus()
    seen = asyncio.Event()

    async def listener(data):
        seen.set()

    bus.on("tick", listener)
    bus.emit("tick", None)
    await asyncio.wait_for(seen.wait(), timeout=1)


@pytest.mark.asyncio
async def test_subscribe_streams_published_events() -> None:
    bus = EventBus()
    stream = bus.subscribe("tick")
    consumer = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)
    await bus.publish("tick", {"n": 1})
    assert await asyncio.wait_for(consumer, timeout=1) == {"n": 1}
    await stream.aclose()
    assert bus.listener_count("tick") == 0
