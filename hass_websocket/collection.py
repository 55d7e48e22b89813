"""Reference-counted, auto-refreshing views over server-pushed state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from .connection import Connection
from .const import EVENT_DISCONNECTED, EVENT_READY, UNSUB_GRACE_PERIOD
from .exceptions import HassError
from .models import Unsubscribe
from .store import Store

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

FetchCollection = Callable[[Connection], Awaitable[Any]]
SubscribeUpdates = Callable[[Connection, Store[Any]], Awaitable[Unsubscribe]]


class Collection(Generic[T]):
    """State shared by every subscriber of one key on one connection.

    The server subscription is set up when the first subscriber arrives and
    torn down ``unsub_grace`` seconds after the last one leaves.
    """

    def __init__(
        self,
        conn: Connection,
        key: str,
        fetch_collection: FetchCollection | None = None,
        subscribe_updates: SubscribeUpdates | None = None,
        unsub_grace: float | None = UNSUB_GRACE_PERIOD,
    ) -> None:
        self._conn = conn
        self.key = key
        self._fetch_collection = fetch_collection
        self._subscribe_updates = subscribe_updates
        self._unsub_grace = unsub_grace
        self._store: Store[T] = Store()
        self._active = 0
        self._unsub_task: asyncio.Task[Unsubscribe] | None = None
        self._unsub_timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> T | None:
        return self._store.state

    @property
    def active(self) -> int:
        """Number of attached subscribers."""
        return self._active

    async def refresh(self) -> None:
        """Fetch the full state from the server and replace ours with it."""
        if self._fetch_collection is None:
            raise HassError("Collection does not support refresh")
        state = await self._fetch_collection(self._conn)
        self._store.set_state(state, True)

    def subscribe(self, subscriber: Callable[[T], None]) -> Callable[[], None]:
        """Attach ``subscriber``; returns a function that detaches it."""
        self._active += 1
        # First subscriber attaches the collection
        if self._active == 1:
            self._setup_update_subscription()

        unsub = self._store.subscribe(subscriber)
        detached = False

        def deliver_current() -> None:
            state = self._store.state
            if not detached and state is not None:
                subscriber(state)

        if self._store.state is not None:
            # Don't call it right away so that the caller has time
            # to initialize all the things.
            asyncio.get_running_loop().call_soon(deliver_current)

        def unsubscribe() -> None:
            nonlocal detached
            if detached:
                return
            detached = True
            unsub()
            self._active -= 1
            if not self._active:
                if self._unsub_grace:
                    self._schedule_teardown()
                else:
                    self._teardown_update_subscription()

        return unsubscribe

    def _setup_update_subscription(self) -> None:
        if self._unsub_timer is not None:
            # Still subscribed, keep using it
            self._unsub_timer.cancel()
            self._unsub_timer = None
            return

        _LOGGER.debug("Setting up collection %s", self.key)
        if self._subscribe_updates is not None:
            self._unsub_task = self._create_task(
                self._subscribe_updates(self._conn, self._store)
            )
            self._unsub_task.add_done_callback(self._log_subscribe_failure)
        if self._fetch_collection is not None:
            # Fetch when the connection is re-established
            self._conn.add_event_listener(EVENT_READY, self._handle_ready)
            self._handle_ready()
        self._conn.add_event_listener(EVENT_DISCONNECTED, self._handle_disconnect)

    def _teardown_update_subscription(self) -> None:
        _LOGGER.debug("Tearing down collection %s", self.key)
        self._unsub_timer = None
        unsub_task = self._unsub_task
        self._unsub_task = None
        if unsub_task is not None:
            self._create_task(self._unsubscribe_updates(unsub_task))
        self._store.clear_state()
        self._conn.remove_event_listener(EVENT_READY, self._handle_ready)
        self._conn.remove_event_listener(EVENT_DISCONNECTED, self._handle_disconnect)

    def _schedule_teardown(self) -> None:
        assert self._unsub_grace is not None
        self._unsub_timer = asyncio.get_running_loop().call_later(
            self._unsub_grace, self._teardown_update_subscription
        )

    def _handle_disconnect(self, _conn: Connection | None = None, _data: Any = None) -> None:
        # Going to unsubscribe anyway, no point waiting while offline
        if self._unsub_timer is not None:
            self._unsub_timer.cancel()
            self._teardown_update_subscription()

    def _handle_ready(self, _conn: Connection | None = None, _data: Any = None) -> None:
        self._create_task(self._refresh_swallow())

    async def _refresh_swallow(self) -> None:
        try:
            await self.refresh()
        except HassError as err:
            # Errors while the socket is connecting or closed are expected;
            # refresh runs again once the connection is ready.
            if self._conn.connected:
                _LOGGER.error("Error refreshing collection %s: %s", self.key, err)

    async def _unsubscribe_updates(self, unsub_task: asyncio.Task[Unsubscribe]) -> None:
        try:
            unsub = await unsub_task
            await unsub()
        except HassError as err:
            _LOGGER.debug("Unsubscribing collection %s failed: %s", self.key, err)

    def _log_subscribe_failure(self, task: asyncio.Task[Unsubscribe]) -> None:
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.error("Subscribing collection %s failed: %s", self.key, err)

    def _create_task(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def get_collection(
    conn: Connection,
    key: str,
    fetch_collection: FetchCollection | None = None,
    subscribe_updates: SubscribeUpdates | None = None,
    *,
    unsub_grace: float | None = UNSUB_GRACE_PERIOD,
) -> Collection[Any]:
    """Return the collection stored under ``key`` on ``conn``, creating it once.

    ``fetch_collection`` fetches the current state; without it
    ``subscribe_updates`` is expected to deliver the current state itself.
    A falsy ``unsub_grace`` tears down as soon as the last subscriber leaves.
    """
    if key not in conn.collections:
        conn.collections[key] = Collection(
            conn, key, fetch_collection, subscribe_updates, unsub_grace
        )
    return conn.collections[key]
