"""Tests for shared, reference counted collections."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from conftest import settle
from hass_websocket import create_connection, get_collection
from hass_websocket.exceptions import HassError


async def _config_updates(conn, store):
    return await conn.subscribe_events(
        lambda event: store.set_state(event, True), "core_config_updated"
    )


async def _fetch_config(conn):
    return await conn.send_message_promise({"type": "get_config"})


@pytest_asyncio.fixture
async def conn(auth, session):
    conn = await create_connection(auth, session, reconnect_delay=0)
    yield conn
    await conn.close()


def _ready(conn) -> asyncio.Event:
    fired = asyncio.Event()
    conn.add_event_listener("ready", lambda _conn, _data: fired.set())
    return fired


@pytest.mark.asyncio
async def test_same_key_returns_same_collection(conn) -> None:
    coll = get_collection(conn, "config", _fetch_config)

    assert get_collection(conn, "config") is coll
    assert conn.collections["config"] is coll
    assert get_collection(conn, "other", _fetch_config) is not coll


@pytest.mark.asyncio
async def test_subscribers_share_one_server_subscription(conn, session) -> None:
    coll = get_collection(conn, "config", None, _config_updates, unsub_grace=0.05)
    first, second = [], []

    unsub_first = coll.subscribe(first.append)
    unsub_second = coll.subscribe(second.append)
    await settle()

    subscribes = session.ws.sent_of_type("subscribe_events")
    assert len(subscribes) == 1
    sub_id = subscribes[0]["id"]
    session.ws.push({"id": sub_id, "type": "event", "event": {"unit": "C"}})
    await settle()
    assert first == second == [{"unit": "C"}]

    unsub_first()
    await settle()
    assert coll.active == 1
    assert session.ws.sent_of_type("unsubscribe_events") == []

    unsub_second()
    await settle()
    # Still inside the grace period
    assert session.ws.sent_of_type("unsubscribe_events") == []

    await asyncio.sleep(0.1)
    await settle()
    unsubscribes = session.ws.sent_of_type("unsubscribe_events")
    assert [message["subscription"] for message in unsubscribes] == [sub_id]
    assert coll.state is None
    assert coll.active == 0


@pytest.mark.asyncio
async def test_subscriber_detaching_twice_counts_once(conn) -> None:
    coll = get_collection(conn, "config", None, _config_updates, unsub_grace=0.05)
    unsub = coll.subscribe(lambda _state: None)
    coll.subscribe(lambda _state: None)

    unsub()
    unsub()

    assert coll.active == 1


@pytest.mark.asyncio
async def test_resubscribe_within_grace_keeps_server_subscription(conn, session) -> None:
    coll = get_collection(conn, "config", None, _config_updates, unsub_grace=0.05)
    unsub = coll.subscribe(lambda _state: None)
    await settle()

    unsub()
    coll.subscribe(lambda _state: None)
    await asyncio.sleep(0.1)
    await settle()

    assert len(session.ws.sent_of_type("subscribe_events")) == 1
    assert session.ws.sent_of_type("unsubscribe_events") == []


@pytest.mark.asyncio
async def test_no_grace_tears_down_at_once(conn, session) -> None:
    coll = get_collection(conn, "config", None, _config_updates, unsub_grace=0)
    unsub = coll.subscribe(lambda _state: None)
    await settle()

    unsub()
    await settle()

    assert len(session.ws.sent_of_type("unsubscribe_events")) == 1


@pytest.mark.asyncio
async def test_current_state_delivered_on_next_tick(conn, hass) -> None:
    hass.results["get_config"] = {"version": "2024.1.0"}
    coll = get_collection(conn, "config", _fetch_config)
    first = []
    coll.subscribe(first.append)
    await settle()
    assert first == [{"version": "2024.1.0"}]

    late = []
    coll.subscribe(late.append)
    assert late == []
    await settle()

    assert late == [{"version": "2024.1.0"}]
    assert first == [{"version": "2024.1.0"}]


@pytest.mark.asyncio
async def test_fetch_runs_again_when_reconnected(conn, session, hass) -> None:
    hass.results["get_config"] = {"version": "2024.1.0"}
    coll = get_collection(conn, "config", _fetch_config)
    states = []
    coll.subscribe(states.append)
    await settle()
    ready = _ready(conn)

    hass.results["get_config"] = {"version": "2024.2.0"}
    session.ws.drop()
    await asyncio.wait_for(ready.wait(), 2)
    await settle()

    assert states == [{"version": "2024.1.0"}, {"version": "2024.2.0"}]
    assert coll.state == {"version": "2024.2.0"}


@pytest.mark.asyncio
async def test_disconnect_during_grace_tears_down(conn, session) -> None:
    coll = get_collection(conn, "config", None, _config_updates, unsub_grace=5)
    unsub = coll.subscribe(lambda _state: None)
    await settle()
    ready = _ready(conn)

    unsub()
    session.ws.drop()
    await asyncio.wait_for(ready.wait(), 2)
    await settle()

    # Nothing re-established on the new socket
    assert session.ws.sent_of_type("subscribe_events") == []
    assert coll.state is None

    # A new subscriber starts from scratch
    coll.subscribe(lambda _state: None)
    await settle()
    assert len(session.ws.sent_of_type("subscribe_events")) == 1


@pytest.mark.asyncio
async def test_refresh_without_fetch_raises(conn) -> None:
    coll = get_collection(conn, "config", None, _config_updates)

    with pytest.raises(HassError):
        await coll.refresh()


@pytest.mark.asyncio
async def test_failed_subscribe_is_logged(conn, hass, caplog) -> None:
    hass.failures["subscribe_events"] = {"code": "unauthorized", "message": "Unauthorized"}
    coll = get_collection(conn, "config", None, _config_updates)

    coll.subscribe(lambda _state: None)
    await settle()

    assert "Subscribing collection config failed" in caplog.text
    assert coll.state is None


@pytest.mark.asyncio
async def test_detached_before_next_tick_gets_nothing(conn, hass) -> None:
    hass.results["get_config"] = {"version": "2024.1.0"}
    coll = get_collection(conn, "config", _fetch_config)
    coll.subscribe(lambda _state: None)
    await settle()

    late = []
    unsub = coll.subscribe(late.append)
    unsub()
    await settle()

    assert late == []
