"""Builders for outgoing WebSocket messages."""

from __future__ import annotations

from typing import Any

from .const import (
    MSG_TYPE_AUTH,
    MSG_TYPE_GET_STATES,
    MSG_TYPE_PING,
    MSG_TYPE_SUBSCRIBE_ENTITIES,
    MSG_TYPE_SUBSCRIBE_EVENTS,
    MSG_TYPE_SUPPORTED_FEATURES,
    MSG_TYPE_UNSUBSCRIBE_EVENTS,
    SUPPORTED_FEATURES_ID,
)


def auth(access_token: str) -> dict[str, Any]:
    return {"type": MSG_TYPE_AUTH, "access_token": access_token}


def supported_features() -> dict[str, Any]:
    """Announce client capabilities; sent once, right after ``auth_ok``."""
    return {
        "type": MSG_TYPE_SUPPORTED_FEATURES,
        "id": SUPPORTED_FEATURES_ID,
        "features": {"coalesce_messages": 1},
    }


def states() -> dict[str, Any]:
    return {"type": MSG_TYPE_GET_STATES}


def subscribe_events(event_type: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"type": MSG_TYPE_SUBSCRIBE_EVENTS}
    if event_type:
        message["event_type"] = event_type
    return message


def subscribe_entities() -> dict[str, Any]:
    return {"type": MSG_TYPE_SUBSCRIBE_ENTITIES}


def unsubscribe_events(subscription: int) -> dict[str, Any]:
    return {"type": MSG_TYPE_UNSUBSCRIBE_EVENTS, "subscription": subscription}


def ping() -> dict[str, Any]:
    return {"type": MSG_TYPE_PING}

