"""Entity state collection kept up to date from compressed state diffs."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from . import messages
from .collection import Collection, get_collection
from .connection import Connection
from .const import ENTITIES_COLLECTION_KEY, SUBSCRIBE_ENTITIES_VERSION
from .handshake import at_least_ha_version
from .models import Context, EntityState, HassEntities, Unsubscribe
from .store import Store

_LOGGER = logging.getLogger(__name__)


def _iso_timestamp(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=UTC).isoformat()


async def get_states(conn: Connection) -> list[dict[str, Any]]:
    return await conn.send_message_promise(messages.states())


def _added_state(entity_id: str, new_state: dict[str, Any]) -> EntityState:
    last_changed = _iso_timestamp(new_state["lc"])
    return EntityState(
        entity_id=entity_id,
        state=new_state["s"],
        attributes=new_state.get("a") or {},
        context=Context.from_value(new_state["c"]) if new_state.get("c") else None,
        last_changed=last_changed,
        last_updated=_iso_timestamp(new_state["lu"]) if new_state.get("lu") else last_changed,
    )


def _changed_state(entity_state: EntityState, diff: dict[str, Any]) -> EntityState:
    to_add = diff.get("+") or {}
    to_remove = diff.get("-") or {}
    changes: dict[str, Any] = {}

    # Only copy attributes when they change so untouched ones keep identity
    attributes_changed = bool(to_add.get("a") or to_remove.get("a"))
    attributes = (
        dict(entity_state.attributes) if attributes_changed else entity_state.attributes
    )

    if "s" in to_add:
        changes["state"] = to_add["s"]
    if to_add.get("c"):
        if entity_state.context is None:
            changes["context"] = Context.from_value(to_add["c"])
        else:
            changes["context"] = entity_state.context.merge(to_add["c"])
    if to_add.get("lc"):
        changes["last_changed"] = changes["last_updated"] = _iso_timestamp(to_add["lc"])
    elif to_add.get("lu"):
        changes["last_updated"] = _iso_timestamp(to_add["lu"])
    if to_add.get("a"):
        attributes.update(to_add["a"])
    for key in to_remove.get("a") or ():
        attributes.pop(key, None)
    if attributes_changed:
        changes["attributes"] = attributes

    return dataclasses.replace(entity_state, **changes)


def process_event(store: Store[HassEntities], updates: dict[str, Any]) -> None:
    """Apply one ``subscribe_entities`` event: added, then removed, then changed."""
    state: HassEntities = dict(store.state or {})

    for entity_id, new_state in (updates.get("a") or {}).items():
        state[entity_id] = _added_state(entity_id, new_state)

    for entity_id in updates.get("r") or ():
        state.pop(entity_id, None)

    for entity_id, diff in (updates.get("c") or {}).items():
        entity_state = state.get(entity_id)
        if entity_state is None:
            _LOGGER.warning("Received state update for unknown entity %s", entity_id)
            continue
        state[entity_id] = _changed_state(entity_state, diff)

    store.set_state(state, True)


async def subscribe_updates(
    conn: Connection, store: Store[HassEntities]
) -> Unsubscribe:
    return await conn.subscribe_message(
        lambda event: process_event(store, event), messages.subscribe_entities()
    )


def legacy_process_event(store: Store[HassEntities], event: dict[str, Any]) -> None:
    """Apply a ``state_changed`` event to a table fetched with ``get_states``."""
    state = store.state
    if state is None:
        return
    data = event["data"]
    new_state = data.get("new_state")
    if new_state:
        store.set_state({new_state["entity_id"]: EntityState.from_dict(new_state)})
    else:
        entities = dict(state)
        entities.pop(data["entity_id"], None)
        store.set_state(entities, True)


async def legacy_fetch_entities(conn: Connection) -> HassEntities:
    states = await get_states(conn)
    return {raw["entity_id"]: EntityState.from_dict(raw) for raw in states}


async def legacy_subscribe_updates(
    conn: Connection, store: Store[HassEntities]
) -> Unsubscribe:
    return await conn.subscribe_events(
        lambda event: legacy_process_event(store, event), "state_changed"
    )


def entities_coll(conn: Connection) -> Collection[HassEntities]:
    """Entity collection of ``conn``; incremental when the server supports it."""
    if at_least_ha_version(conn.ha_version, *SUBSCRIBE_ENTITIES_VERSION):
        return get_collection(conn, ENTITIES_COLLECTION_KEY, None, subscribe_updates)
    return get_collection(
        conn, ENTITIES_COLLECTION_KEY, legacy_fetch_entities, legacy_subscribe_updates
    )


def subscribe_entities(
    conn: Connection, on_change: Callable[[HassEntities], None]
) -> Callable[[], None]:
    return entities_coll(conn).subscribe(on_change)
