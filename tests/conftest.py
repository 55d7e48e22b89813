# ruff: noqa: D101,D102,D103,D107
"""Shared fakes: a scripted Home Assistant server behind fake websockets."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable

import aiohttp
import pytest

from hass_websocket import create_long_lived_token_auth

HASS_URL = "http://hass.local:8123"
WS_URL = "ws://hass.local:8123/api/websocket"


@dataclass
class FakeMessage:
    type: aiohttp.WSMsgType
    data: Any = None
    extra: Any = None


class FakeWebSocket:
    """Stand-in for ``aiohttp.ClientWebSocketResponse``."""

    def __init__(self, hass: FakeHass) -> None:
        self._hass = hass
        self._incoming: asyncio.Queue[FakeMessage] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        message = json.loads(data)
        self.sent.append(message)
        self._hass.handle(self, message)

    async def receive(self) -> FakeMessage:
        return await self._incoming.get()

    async def close(self) -> bool:
        if self.closed:
            return False
        self.closed = True
        self._incoming.put_nowait(FakeMessage(aiohttp.WSMsgType.CLOSED))
        return True

    def push(self, payload: Any) -> None:
        """Deliver a JSON frame (a message or a list of messages) to the client."""
        self.push_raw(json.dumps(payload))

    def push_raw(self, data: str) -> None:
        """Deliver a text frame as is, JSON or not."""
        self._incoming.put_nowait(FakeMessage(aiohttp.WSMsgType.TEXT, data))

    def drop(self) -> None:
        """Simulate the server going away."""
        self.closed = True
        self._incoming.put_nowait(FakeMessage(aiohttp.WSMsgType.CLOSED))

    def sent_of_type(self, msg_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == msg_type]


@dataclass
class FakeHass:
    """Answers the client the way Home Assistant would."""

    ha_version: str = "2024.1.0"
    reject_auth: bool = False
    auto_reply: bool = True
    results: dict[str, Any] = field(default_factory=dict)
    failures: dict[str, dict[str, str]] = field(default_factory=dict)
    on_message: Callable[[FakeWebSocket, dict[str, Any]], None] | None = None

    def handle(self, ws: FakeWebSocket, message: dict[str, Any]) -> None:
        msg_type = message.get("type")
        if msg_type == "auth":
            if self.reject_auth:
                ws.push({"type": "auth_invalid", "message": "Invalid access token"})
            else:
                ws.push({"type": "auth_ok", "ha_version": self.ha_version})
            return
        if self.on_message is not None:
            self.on_message(ws, message)
        if not self.auto_reply or msg_type == "supported_features":
            return
        if msg_type == "ping":
            ws.push({"id": message["id"], "type": "pong"})
        elif msg_type in self.failures:
            ws.push(
                {
                    "id": message["id"],
                    "type": "result",
                    "success": False,
                    "error": self.failures[msg_type],
                }
            )
        else:
            ws.push(
                {
                    "id": message["id"],
                    "type": "result",
                    "success": True,
                    "result": self.results.get(msg_type),
                }
            )


class FakeSession:
    """Stand-in for ``aiohttp.ClientSession`` that hands out fake sockets."""

    def __init__(self, hass: FakeHass) -> None:
        self.hass = hass
        self.sockets: list[FakeWebSocket] = []
        self.connect_errors: list[BaseException] = []
        self.urls: list[str] = []
        self.closed = False

    async def ws_connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.urls.append(url)
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        ws = FakeWebSocket(self.hass)
        ws.push({"type": "auth_required", "ha_version": self.hass.ha_version})
        self.sockets.append(ws)
        return ws

    async def close(self) -> None:
        self.closed = True

    @property
    def ws(self) -> FakeWebSocket:
        """The most recently opened socket."""
        return self.sockets[-1]


async def settle(rounds: int = 50) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def hass() -> FakeHass:
    return FakeHass()


@pytest.fixture
def session(hass: FakeHass) -> FakeSession:
    return FakeSession(hass)


@pytest.fixture
def auth():
    return create_long_lived_token_auth(HASS_URL, "secret-token")
