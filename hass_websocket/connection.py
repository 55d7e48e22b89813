"""Connection that wraps a socket and speaks the Home Assistant WebSocket API.

The connection outlives the sockets it wraps: when a socket drops it is
replaced by a new one, pending requests are failed and subscriptions are
re-established on the new socket.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import TYPE_CHECKING, Any

import aiohttp

from . import messages
from .auth import Auth
from .config import ConnectionOptions
from .const import (
    EVENT_DISCONNECTED,
    EVENT_READY,
    EVENT_RECONNECT_ERROR,
    FIRST_COMMAND_ID,
    MSG_TYPE_EVENT,
    MSG_TYPE_PONG,
    MSG_TYPE_RESULT,
    RECONNECT_MAX_STEPS,
)
from .exceptions import (
    HassCommandError,
    HassConnectionLostError,
    HassError,
    HassInvalidAuthError,
)
from .handshake import HassSocket, SocketState, create_socket
from .models import (
    CommandInfo,
    PlainCommand,
    QueuedMessage,
    Subscription,
    Unsubscribe,
)

if TYPE_CHECKING:
    from .collection import Collection

_LOGGER = logging.getLogger(__name__)

EventListener = Callable[["Connection", Any], None]


def _resolve_once(future: asyncio.Future[Any], result: Any) -> None:
    """Resolve ``future`` unless it already has an outcome.

    A carried-forward subscription is resolved again after every reconnect;
    only the first outcome counts.
    """
    if not future.done():
        future.set_result(result)


def _reject_once(future: asyncio.Future[Any], err: BaseException) -> None:
    if not future.done():
        future.set_exception(err)


async def _noop() -> None:
    return None


class Connection:
    """A logical connection to Home Assistant spanning many sockets."""

    def __init__(
        self,
        socket: HassSocket,
        auth: Auth,
        session: aiohttp.ClientSession,
        options: ConnectionOptions | None = None,
        *,
        owns_session: bool = False,
    ) -> None:
        self.options = options or ConnectionOptions()
        self._auth = auth
        self._session = session
        self._owns_session = owns_session
        self.socket: HassSocket | None = None
        self.ha_version: str | None = None
        self.close_requested = False
        # Set when the reconnect loop gave up for good
        self._reconnect_abandoned = False

        # Id of the last command sent on the current socket
        self._command_id = FIRST_COMMAND_ID - 1
        # Active subscriptions and commands in flight
        self._commands: dict[int, CommandInfo] = {}
        self._old_subscriptions: list[Subscription] | None = None
        self._event_listeners: dict[str, list[EventListener]] = {}
        self._suspend_reconnect: Awaitable[Any] | None = None
        self._queued_messages: list[QueuedMessage] | None = None

        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

        # Collections shared by all consumers of this connection, by key
        self.collections: dict[str, Collection[Any]] = {}

        self._attach_socket(socket)

    @property
    def connected(self) -> bool:
        return self.socket is not None and self.socket.is_open

    @property
    def closed(self) -> bool:
        """True once ``close()`` was called."""
        return self.close_requested

    @property
    def state(self) -> SocketState:
        if self.socket is not None:
            return self.socket.state
        return SocketState.CLOSED if self.close_requested else SocketState.CONNECTING

    # -- lifecycle events -------------------------------------------------

    def add_event_listener(self, event_type: str, callback: EventListener) -> None:
        self._event_listeners.setdefault(event_type, []).append(callback)

    def remove_event_listener(self, event_type: str, callback: EventListener) -> None:
        listeners = self._event_listeners.get(event_type)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def fire_event(self, event_type: str, event_data: Any = None) -> None:
        for callback in list(self._event_listeners.get(event_type, [])):
            callback(self, event_data)

    # -- socket management ------------------------------------------------

    def suspend_reconnect_until(self, suspend: Awaitable[Any]) -> None:
        """Hold off reconnecting after the next disconnect until ``suspend`` is done."""
        self._suspend_reconnect = suspend

    async def suspend(self) -> None:
        """Close the socket; it is reopened once the suspend awaitable is done."""
        if self._suspend_reconnect is None:
            raise HassError("Suspend awaitable not set")
        if self.socket is not None:
            await self.socket.close()

    async def reconnect(self, force: bool = False) -> None:
        """Reconnect the websocket connection.

        With ``force`` the old socket is discarded instead of being closed
        gracefully, and recovery starts right away.
        """
        socket = self.socket
        if socket is None:
            return
        if not force:
            # The listen loop sees the close and takes care of recovery
            await socket.close()
            return
        self._stop_listening()
        self._handle_close()
        await socket.close()

    async def close(self) -> None:
        """Close the connection for good; no reconnect will be attempted."""
        self.close_requested = True
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reject_queued_messages()

        socket = self.socket
        if socket is not None:
            self._stop_listening()
            self._handle_close()
            await socket.close()

        self._reject_pending(HassConnectionLostError("Connection closed"))

        if self._owns_session:
            await self._session.close()

    def _attach_socket(self, socket: HassSocket) -> None:
        self.socket = socket
        self.ha_version = socket.ha_version
        # The server tracks ids per socket, start over on every new one
        self._command_id = FIRST_COMMAND_ID - 1
        self._commands = {}
        self._listen_task = asyncio.create_task(self._listen_loop(socket))

    async def _set_socket(self, socket: HassSocket) -> None:
        carried = self._old_subscriptions or []
        self._old_subscriptions = None
        # Subscriptions requested while we had no socket
        carried += [
            info for info in self._commands.values() if isinstance(info, Subscription)
        ]
        self._attach_socket(socket)

        for info in carried:
            if not info.active:
                continue
            if info.resubscribe is None:
                _reject_once(info.future, HassConnectionLostError("Connection lost"))
                continue
            self._create_task(self._resubscribe(info))

        queued = self._queued_messages
        if queued is not None:
            self._queued_messages = None
            for queued_msg in queued:
                try:
                    await queued_msg.resolve()
                except HassError as err:
                    _LOGGER.debug("Dropping queued message: %s", err)

        self.fire_event(EVENT_READY)

    async def _resubscribe(self, info: Subscription) -> None:
        assert info.resubscribe is not None
        try:
            unsub = await info.resubscribe()
        except HassError as err:
            _LOGGER.warning("Unable to re-establish subscription: %s", err)
            _reject_once(info.future, err)
            return
        info.unsubscribe = unsub
        if not info.active:
            # Unsubscribed while we were re-establishing it
            await unsub()
            return
        # Resolve in case it wasn't resolved yet. This allows subscribing
        # while disconnected and recovering properly.
        _resolve_once(info.future, None)

    def _stop_listening(self) -> None:
        if self._listen_task is not None and not self._listen_task.done():
            if self._listen_task is not asyncio.current_task():
                self._listen_task.cancel()
        self._listen_task = None

    def _handle_close(self) -> None:
        old_commands = self._commands
        self._commands = {}
        self._command_id = FIRST_COMMAND_ID - 1
        self.socket = None

        carried = [info for info in old_commands.values() if isinstance(info, Subscription)]
        self._old_subscriptions = (self._old_subscriptions or []) + carried

        # Subscriptions are not failed, they will be recovered
        lost = HassConnectionLostError("Connection lost")
        for info in old_commands.values():
            if isinstance(info, PlainCommand):
                _reject_once(info.future, lost)

        if self.close_requested:
            return

        self.fire_event(EVENT_DISCONNECTED)
        if self._suspend_reconnect is not None:
            # Keep accepting messages, they go out once we're back
            self._queued_messages = []
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        if self._suspend_reconnect is not None:
            suspend = self._suspend_reconnect
            self._suspend_reconnect = None
            try:
                await suspend
            except Exception as err:  # noqa: BLE001
                _LOGGER.warning("Suspend awaitable failed, reconnecting: %s", err)
            # The first retry after suspend queues up all messages
            if self._queued_messages is None:
                self._queued_messages = []

        # Backoff is handled here, the handshake itself should not retry
        options = self.options.replace(setup_retry=0)
        tries = 0
        while not self.close_requested:
            delay = min(tries, RECONNECT_MAX_STEPS) * self.options.reconnect_delay
            if delay:
                _LOGGER.info("Reconnecting in %s seconds", delay)
                await asyncio.sleep(delay)
            if self.close_requested:
                return
            try:
                socket = await create_socket(self._auth, self._session, options)
            except HassInvalidAuthError as err:
                _LOGGER.warning("Reconnect failed, invalid authentication: %s", err)
                self._give_up_reconnect(err)
                return
            except HassError as err:
                self._reject_queued_messages()
                _LOGGER.debug("Reconnect attempt %d failed: %s", tries + 1, err)
                tries += 1
                continue
            except Exception as err:  # noqa: BLE001
                _LOGGER.exception("Unexpected error while reconnecting")
                self._give_up_reconnect(err)
                return
            if self.close_requested:
                await socket.close()
                return
            await self._set_socket(socket)
            return

    def _give_up_reconnect(self, err: Exception) -> None:
        self._reconnect_abandoned = True
        self._reject_queued_messages()
        self._reject_pending(HassConnectionLostError(f"Reconnect failed: {err}"))
        self.fire_event(EVENT_RECONNECT_ERROR, err)

    def _reject_pending(self, err: HassError) -> None:
        """Fail every command and subscription still waiting for an answer."""
        for info in [*(self._old_subscriptions or []), *self._commands.values()]:
            _reject_once(info.future, err)
        self._old_subscriptions = None
        self._commands = {}

    def _reject_queued_messages(self) -> None:
        queued = self._queued_messages
        if queued is None:
            return
        self._queued_messages = None
        for queued_msg in queued:
            if queued_msg.reject:
                queued_msg.reject(HassConnectionLostError("Connection lost"))

    # -- receiving --------------------------------------------------------

    async def _listen_loop(self, socket: HassSocket) -> None:
        try:
            while True:
                msg = await socket.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(msg.data)
                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSED,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.ERROR,
                ):
                    _LOGGER.warning("WebSocket connection lost")
                    break
                else:
                    _LOGGER.debug("WS recv other: type=%s", msg.type)
        except asyncio.CancelledError:
            return
        except Exception:
            _LOGGER.exception("Error in WebSocket listen loop")
            await socket.close()

        if self.socket is socket:
            self._handle_close()

    def _handle_message(self, data: str) -> None:
        try:
            message_group = json.loads(data)
        except json.JSONDecodeError:
            _LOGGER.warning("Received invalid JSON: %s", data[:200])
            return
        if not isinstance(message_group, list):
            message_group = [message_group]
        for message in message_group:
            self._dispatch(message)

    def _dispatch(self, message: dict[str, Any]) -> None:
        command_id = message.get("id")
        info = self._commands.get(command_id) if command_id is not None else None
        msg_type = message.get("type")

        if msg_type == MSG_TYPE_EVENT:
            if isinstance(info, Subscription):
                try:
                    info.callback(message.get("event"))
                except Exception:
                    _LOGGER.exception("Error in subscription %s callback", command_id)
                return
            _LOGGER.warning(
                "Received event for unknown subscription %s. Unsubscribing.",
                command_id,
            )
            self._create_task(self._unsubscribe_unknown(command_id))

        elif msg_type == MSG_TYPE_RESULT:
            # No info is fine, send_message does not wait for a result
            if info is None:
                return
            if message.get("success"):
                _resolve_once(info.future, message.get("result"))
                # Subscriptions stay to receive their events
                if isinstance(info, PlainCommand):
                    del self._commands[command_id]
            else:
                error = message.get("error") or {}
                _reject_once(
                    info.future,
                    HassCommandError(error.get("code"), error.get("message")),
                )
                del self._commands[command_id]

        elif msg_type == MSG_TYPE_PONG:
            if info is None:
                _LOGGER.warning("Received unknown pong response %s", command_id)
                return
            _resolve_once(info.future, None)
            del self._commands[command_id]

        else:
            _LOGGER.debug("Unhandled message type %s", msg_type)

    async def _unsubscribe_unknown(self, subscription_id: int | None) -> None:
        if subscription_id is None:
            return
        try:
            await self.send_message_promise(messages.unsubscribe_events(subscription_id))
        except HassError as err:
            _LOGGER.debug("Ignoring unsubscribe failure for %s: %s", subscription_id, err)

    # -- sending ----------------------------------------------------------

    async def send_message(
        self, message: dict[str, Any], command_id: int | None = None
    ) -> None:
        """Send a message without waiting for its result.

        While reconnecting is suspended the message is queued and sent once
        the connection is back.
        """
        if not self.connected:
            if self._queued_messages is not None and command_id is None:
                self._queued_messages.append(
                    QueuedMessage(resolve=lambda: self.send_message(message))
                )
                return
            raise HassConnectionLostError("Not connected")

        if command_id is None:
            command_id = self._gen_cmd_id()
        assert self.socket is not None
        _LOGGER.debug("WS send %s: %s", command_id, message.get("type"))
        await self.socket.send_json({**message, "id": command_id})

    async def send_message_promise(self, message: dict[str, Any]) -> Any:
        """Send a message and return the ``result`` the server answers with."""
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        if self._queued_messages is not None:
            self._queued_messages.append(
                QueuedMessage(
                    resolve=lambda: self._send_command(message, future),
                    reject=lambda err: _reject_once(future, err),
                )
            )
        else:
            await self._send_command(message, future)
        return await future

    async def _send_command(
        self, message: dict[str, Any], future: asyncio.Future[Any]
    ) -> None:
        command_id = self._gen_cmd_id()
        self._commands[command_id] = PlainCommand(future)
        try:
            await self.send_message(message, command_id)
        except HassError as err:
            self._commands.pop(command_id, None)
            _reject_once(future, err)

    async def subscribe_message(
        self,
        callback: Callable[[Any], None],
        subscribe_message: dict[str, Any],
        *,
        resubscribe: bool = True,
    ) -> Unsubscribe:
        """Run a command that starts a subscription on the backend.

        ``callback`` is called with every event the subscription produces.
        With ``resubscribe`` the subscription is re-established after a
        reconnect. Returns an idempotent unsubscribe coroutine function.
        """
        if self.close_requested or self._reconnect_abandoned:
            # Nothing would ever re-establish it
            raise HassConnectionLostError("Connection closed")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        info = Subscription(
            future=future,
            callback=callback,
            unsubscribe=_noop,
            resubscribe=(
                (lambda: self.subscribe_message(callback, subscribe_message))
                if resubscribe
                else None
            ),
        )

        async def start() -> None:
            command_id = self._gen_cmd_id()

            # Kept on info so it can be swapped out when the subscription
            # is re-established on a new socket.
            async def unsubscribe() -> None:
                info.active = False
                try:
                    # No need to unsubscribe if we're disconnected
                    if self.connected and self._commands.get(command_id) is info:
                        await self.send_message_promise(
                            messages.unsubscribe_events(command_id)
                        )
                finally:
                    if self._commands.get(command_id) is info:
                        del self._commands[command_id]

            info.unsubscribe = unsubscribe
            self._commands[command_id] = info
            try:
                await self.send_message(subscribe_message, command_id)
            except HassConnectionLostError as err:
                if self.close_requested or self._reconnect_abandoned:
                    self._commands.pop(command_id, None)
                    _reject_once(future, err)
                # Otherwise the socket is closing and the reconnect logic
                # picks it up

        if self._queued_messages is not None:
            self._queued_messages.append(
                QueuedMessage(resolve=start, reject=lambda err: _reject_once(future, err))
            )
        else:
            await start()
        await future

        unsubscribed = False

        async def unsub() -> None:
            nonlocal unsubscribed
            if unsubscribed:
                return
            unsubscribed = True
            await info.unsubscribe()

        return unsub

    async def subscribe_events(
        self, callback: Callable[[Any], None], event_type: str | None = None
    ) -> Unsubscribe:
        """Subscribe to a specific or all events."""
        return await self.subscribe_message(callback, messages.subscribe_events(event_type))

    async def ping(self) -> None:
        await self.send_message_promise(messages.ping())

    def _gen_cmd_id(self) -> int:
        self._command_id += 1
        return self._command_id

    def _create_task(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task


async def create_connection(
    auth: Auth,
    session: aiohttp.ClientSession | None = None,
    **options: Any,
) -> Connection:
    """Connect and authenticate, returning a ready connection.

    ``options`` are validated against ``CONNECTION_SCHEMA``. Without a
    ``session`` one is created and closed together with the connection.
    """
    conn_options = ConnectionOptions.from_dict(options)
    owns_session = session is None
    if session is None:
        session = aiohttp.ClientSession()
    auth.bind_session(session)
    try:
        socket = await create_socket(auth, session, conn_options)
    except BaseException:
        if owns_session:
            await session.close()
        raise
    return Connection(socket, auth, session, conn_options, owns_session=owns_session)
