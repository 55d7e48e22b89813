"""Open and authenticate a WebSocket to Home Assistant, retrying on failure."""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from typing import Any

import aiohttp

from . import messages
from .auth import Auth
from .config import ConnectionOptions
from .const import (
    COALESCE_MESSAGES_VERSION,
    MSG_TYPE_AUTH_INVALID,
    MSG_TYPE_AUTH_OK,
)
from .exceptions import (
    HassCannotConnectError,
    HassConnectionLostError,
    HassError,
    HassInvalidAuthError,
)

_LOGGER = logging.getLogger(__name__)

_CLOSE_TYPES = (
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
    aiohttp.WSMsgType.ERROR,
)


def at_least_ha_version(
    version: str | None, major: int, minor: int, patch: int | None = None
) -> bool:
    """Return True if ``version`` (e.g. ``2022.9.1``) is at least the given one.

    Without ``patch`` the minor version must be >= ``minor``; with it, the
    minor must be greater or equal with a patch >= ``patch``.
    """
    if not version:
        return False
    parts = version.split(".", 2)
    try:
        ha_major = int(parts[0])
        ha_minor = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return False
    ha_patch: int | None
    try:
        ha_patch = int(parts[2]) if len(parts) > 2 else None
    except ValueError:
        # Dev and beta builds, e.g. 2022.9.0b1 or 2022.10.0.dev0
        ha_patch = None

    if ha_major != major:
        return ha_major > major
    if patch is None:
        return ha_minor >= minor
    if ha_minor != minor:
        return ha_minor > minor
    return ha_patch is not None and ha_patch >= patch


class SocketState(enum.Enum):
    """Lifecycle of one underlying WebSocket."""

    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class HassSocket:
    """An authenticated WebSocket connection."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws
        self.ha_version: str | None = None
        self.state = SocketState.CONNECTING

    @property
    def is_open(self) -> bool:
        return self.state is SocketState.OPEN and not self._ws.closed

    async def send_json(self, message: dict[str, Any]) -> None:
        if self._ws.closed:
            raise HassConnectionLostError("WebSocket is closed")
        await self._ws.send_str(json.dumps(message))

    async def receive(self) -> aiohttp.WSMessage:
        msg = await self._ws.receive()
        if msg.type in _CLOSE_TYPES:
            self.state = SocketState.CLOSED
        return msg

    async def close(self) -> None:
        if self.state is SocketState.CLOSED:
            return
        self.state = SocketState.CLOSING
        try:
            await self._ws.close()
        finally:
            self.state = SocketState.CLOSED

    async def authenticate(self, access_token: str) -> None:
        """Send the auth frame and wait for the verdict."""
        self.state = SocketState.AUTHENTICATING
        await self.send_json(messages.auth(access_token))
        while True:
            msg = await self.receive()
            if msg.type in _CLOSE_TYPES:
                raise HassConnectionLostError(f"WebSocket closed during auth: {msg.type}")
            if msg.type != aiohttp.WSMsgType.TEXT:
                _LOGGER.debug("WS recv other during auth: type=%s", msg.type)
                continue
            try:
                message = json.loads(msg.data)
            except ValueError as err:
                raise HassConnectionLostError(
                    f"Invalid message during auth: {msg.data!r:.100}"
                ) from err
            msg_type = message.get("type")
            if msg_type == MSG_TYPE_AUTH_INVALID:
                raise HassInvalidAuthError(message.get("message", "Invalid auth"))
            if msg_type == MSG_TYPE_AUTH_OK:
                self.ha_version = message.get("ha_version")
                self.state = SocketState.OPEN
                return
            # auth_required, or anything the server sends before deciding
            _LOGGER.debug("WS recv during auth: %s", msg_type)


class _TokenRefresher:
    """Share one in-flight token refresh between handshake attempts."""

    def __init__(self, auth: Auth) -> None:
        self._auth = auth
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.ensure_future(self._auth.refresh_access_token())

    async def wait(self) -> None:
        self.start()
        task = self._task
        try:
            await task  # type: ignore[misc]
        finally:
            if self._task is task:
                self._task = None

    def discard(self) -> None:
        """Drop a refresh nobody is going to wait for."""
        task = self._task
        self._task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
        elif not task.cancelled() and task.exception() is not None:
            _LOGGER.debug("Token refresh failed: %s", task.exception())


async def create_socket(
    auth: Auth,
    session: aiohttp.ClientSession,
    options: ConnectionOptions,
) -> HassSocket:
    """Connect and authenticate, retrying up to ``options.setup_retry`` times.

    Raises HassInvalidAuthError without retrying when the credentials are
    rejected, and HassCannotConnectError once the retries are used up.
    """
    refresher = _TokenRefresher(auth)
    # Start refreshing an expired token even before the socket is open,
    # we will need it anyway.
    if auth.expired:
        refresher.start()

    tries_left = options.setup_retry
    url = auth.ws_url
    while True:
        try:
            return await _connect_once(auth, session, url, options, refresher)
        except HassInvalidAuthError:
            raise
        except (aiohttp.ClientError, HassError, OSError, asyncio.TimeoutError) as err:
            if tries_left == 0:
                refresher.discard()
                raise HassCannotConnectError(f"Cannot connect to {url}: {err}") from err
            if tries_left > 0:
                tries_left -= 1
            _LOGGER.debug(
                "Connecting to %s failed (%s), retrying in %ss",
                url,
                err,
                options.setup_retry_delay,
            )
            await asyncio.sleep(options.setup_retry_delay)


async def _connect_once(
    auth: Auth,
    session: aiohttp.ClientSession,
    url: str,
    options: ConnectionOptions,
    refresher: _TokenRefresher,
) -> HassSocket:
    _LOGGER.info("Connecting to Home Assistant at %s", url)
    ws = await session.ws_connect(url, heartbeat=options.heartbeat)
    socket = HassSocket(ws)
    try:
        if auth.expired:
            await refresher.wait()
        await socket.authenticate(auth.access_token)
    except BaseException:
        await socket.close()
        raise

    _LOGGER.info("Authenticated with Home Assistant %s", socket.ha_version)
    if at_least_ha_version(socket.ha_version, *COALESCE_MESSAGES_VERSION):
        await socket.send_json(messages.supported_features())
    return socket
