"""Tests for change notification delivery."""

import asyncio

import pytest

from pastego.core.notifier import ChangeNotifier


@pytest.mark.asyncio
async def test_delivery_is_deferred_until_emitter_yields():
    notifier = ChangeNotifier()
    received = []
    notifier.subscribe(received.append)

    notifier.emit("a")
    assert received == []

    await notifier.flush()
    assert received == ["a"]


@pytest.mark.asyncio
async def test_async_subscribers_are_awaited_by_flush():
    notifier = ChangeNotifier()
    received = []

    async def subscriber(payload):
        await asyncio.sleep(0.01)
        received.append(payload)

    notifier.subscribe(subscriber)
    notifier.emit(1)
    notifier.emit(2)
    await notifier.flush()

    assert sorted(received) == [1, 2]


@pytest.mark.asyncio
async def test_failures_are_isolated():
    notifier = ChangeNotifier()
    received = []

    async def failing_async(payload):
        raise ValueError("boom")

    notifier.subscribe(lambda payload: 1 / 0)
    notifier.subscribe(failing_async)
    notifier.subscribe(received.append)

    notifier.emit("ok")
    await notifier.flush()

    assert received == ["ok"]


def test_emit_without_running_loop_delivers_inline():
    notifier = ChangeNotifier()
    received = []
    notifier.subscribe(received.append)

    notifier.emit("now")

    assert received == ["now"]


def test_unsubscribe_twice_is_harmless():
    notifier = ChangeNotifier()
    unsubscribe = notifier.subscribe(print)

    unsubscribe()
    unsubscribe()
