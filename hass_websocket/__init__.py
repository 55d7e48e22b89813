"""Home Assistant WebSocket API client with reconnect and shared collections."""

from __future__ import annotations

from .auth import Auth, create_long_lived_token_auth
from .collection import Collection, get_collection
from .config import CONNECTION_SCHEMA, ConnectionOptions
from .connection import Connection, create_connection
from .entities import entities_coll, get_states, subscribe_entities
from .exceptions import (
    HassCannotConnectError,
    HassCommandError,
    HassConnectionLostError,
    HassError,
    HassHostRequiredError,
    HassInvalidAuthCallbackError,
    HassInvalidAuthError,
)
from .handshake import HassSocket, SocketState, at_least_ha_version, create_socket
from .models import Context, EntityState, HassEntities
from .store import Store

__all__ = [
    "CONNECTION_SCHEMA",
    "Auth",
    "Collection",
    "Connection",
    "ConnectionOptions",
    "Context",
    "EntityState",
    "HassCannotConnectError",
    "HassCommandError",
    "HassConnectionLostError",
    "HassEntities",
    "HassError",
    "HassHostRequiredError",
    "HassInvalidAuthCallbackError",
    "HassInvalidAuthError",
    "HassSocket",
    "SocketState",
    "Store",
    "at_least_ha_version",
    "create_connection",
    "create_long_lived_token_auth",
    "create_socket",
    "entities_coll",
    "get_collection",
    "get_states",
    "subscribe_entities",
]
