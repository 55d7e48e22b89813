"""Data models for the Home Assistant WebSocket API."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, fields
from typing import Any

Unsubscribe = Callable[[], Awaitable[None]]


@dataclass
class Context:
    """Context of the change that produced a state."""

    id: str
    parent_id: str | None = None
    user_id: str | None = None

    @classmethod
    def from_value(cls, value: str | dict[str, Any] | None) -> Context:
        """Build a context from the compressed (bare id) or full form."""
        if isinstance(value, str):
            return cls(id=value)
        return cls(**_known_fields(cls, value or {}))

    def merge(self, value: str | dict[str, Any]) -> Context:
        if isinstance(value, str):
            return Context(value, self.parent_id, self.user_id)
        merged = {**self.as_dict(), **_known_fields(Context, value)}
        return Context(**merged)

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "parent_id": self.parent_id, "user_id": self.user_id}


@dataclass
class EntityState:
    """State of a single entity."""

    entity_id: str
    state: str
    attributes: dict[str, Any] = field(default_factory=dict)
    context: Context | None = None
    last_changed: str | None = None
    last_updated: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityState:
        """Build an entity state from a full ``get_states`` style dict."""
        context = data.get("context")
        return cls(
            entity_id=data["entity_id"],
            state=data.get("state", ""),
            attributes=data.get("attributes") or {},
            context=Context.from_value(context) if context is not None else None,
            last_changed=data.get("last_changed"),
            last_updated=data.get("last_updated"),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "state": self.state,
            "attributes": self.attributes,
            "context": self.context.as_dict() if self.context else None,
            "last_changed": self.last_changed,
            "last_updated": self.last_updated,
        }


HassEntities = dict[str, EntityState]


@dataclass
class PlainCommand:
    """A request awaiting its ``result`` (or ``pong``) frame."""

    future: asyncio.Future[Any]


@dataclass
class Subscription:
    """A command whose ``event`` frames keep arriving after the result.

    ``unsubscribe`` is replaced whenever the subscription is re-established
    on a new socket, so handles given out earlier keep working.
    """

    future: asyncio.Future[Any]
    callback: Callable[[Any], None]
    unsubscribe: Unsubscribe
    resubscribe: Callable[[], Awaitable[Unsubscribe]] | None = None
    active: bool = True


CommandInfo = PlainCommand | Subscription


@dataclass
class QueuedMessage:
    """An outbound message deferred while reconnecting is suspended."""

    resolve: Callable[[], Awaitable[None]]
    reject: Callable[[BaseException], None] | None = None


def _known_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}
