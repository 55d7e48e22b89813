"""Tests for the observable store."""

from __future__ import annotations

import pytest

from hass_websocket import Store


def test_set_state_merges_and_notifies() -> None:
    store: Store = Store({"a": 1})
    seen = []
    store.subscribe(seen.append)

    store.set_state({"b": 2})

    assert store.state == {"a": 1, "b": 2}
    assert seen == [{"a": 1, "b": 2}]


def test_overwrite_replaces_state() -> None:
    store: Store = Store({"a": 1})

    store.set_state({"b": 2}, True)

    assert store.state == {"b": 2}


def test_merge_does_not_mutate_previous_state() -> None:
    initial = {"a": 1}
    store: Store = Store(initial)

    store.set_state({"a": 2})

    assert initial == {"a": 1}


def test_unsubscribe_stops_notifications() -> None:
    store: Store = Store()
    seen = []
    unsub = store.subscribe(seen.append)

    unsub()
    unsub()
    store.set_state({"a": 1})

    assert seen == []


def test_listener_removed_during_notification_still_called_once() -> None:
    store: Store = Store()
    calls = []
    unsubs = []

    def first(state) -> None:
        calls.append("first")
        unsubs[1]()

    def second(state) -> None:
        calls.append("second")

    unsubs.append(store.subscribe(first))
    unsubs.append(store.subscribe(second))

    store.set_state({"a": 1})
    store.set_state({"a": 2})

    assert calls == ["first", "second", "first"]


def test_clear_state() -> None:
    store: Store = Store({"a": 1})

    store.clear_state()

    assert store.state is None


def test_action_merges_result() -> None:
    store: Store = Store({"count": 1})
    increment = store.action(lambda state, step: {"count": state["count"] + step})

    increment(2)

    assert store.state == {"count": 3}


def test_action_returning_none_keeps_state() -> None:
    store: Store = Store({"count": 1})
    seen = []
    store.subscribe(seen.append)

    store.action(lambda state: None)()

    assert store.state == {"count": 1}
    assert seen == []


@pytest.mark.asyncio
async def test_async_action_merges_awaited_result() -> None:
    store: Store = Store({"count": 1})

    async def load(state, value):
        return {"loaded": value}

    await store.action(load)("yes")

    assert store.state == {"count": 1, "loaded": "yes"}
