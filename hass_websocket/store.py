"""A minimal observable state container."""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any, Generic, TypeVar

T = TypeVar("T")

Listener = Callable[[T], None]


class Store(Generic[T]):
    """Hold a state value and notify listeners whenever it is set."""

    def __init__(self, state: T | None = None) -> None:
        self._state = state
        self._listeners: list[Listener[T]] = []

    @property
    def state(self) -> T | None:
        return self._state

    def set_state(self, update: Any, overwrite: bool = False) -> None:
        """Merge ``update`` into the state, or replace it with ``overwrite``.

        Listeners registered when the call starts are notified, in order,
        with the new state.
        """
        if overwrite:
            self._state = update
        else:
            self._state = {**(self._state or {}), **update}  # type: ignore[dict-item]
        for listener in list(self._listeners):
            listener(self._state)  # type: ignore[arg-type]

    def clear_state(self) -> None:
        self._state = None

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        """Register ``listener``; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def action(self, action: Callable[..., Any]) -> Callable[..., Any]:
        """Bind ``action(state, *args)`` to the store.

        A non-None return value is merged into the state. For coroutine
        actions the bound function returns a coroutine that merges the
        awaited value.
        """

        def bound(*args: Any) -> Any:
            result = action(self._state, *args)
            if inspect.isawaitable(result):
                return self._apply_async(result)
            if result is not None:
                self.set_state(result)
            return None

        return bound

    async def _apply_async(self, result: Any) -> None:
        value = await result
        if value is not None:
            self.set_state(value)
