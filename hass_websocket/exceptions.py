"""Custom exceptions for the Home Assistant WebSocket client."""

from __future__ import annotations

from .const import (
    ERR_CANNOT_CONNECT,
    ERR_CONNECTION_LOST,
    ERR_HASS_HOST_REQUIRED,
    ERR_INVALID_AUTH,
    ERR_INVALID_AUTH_CALLBACK,
)


class HassError(Exception):
    """Base exception for Home Assistant client errors."""

    code: int | str | None = None


class HassCannotConnectError(HassError):
    """Unable to establish a connection within the retry budget."""

    code = ERR_CANNOT_CONNECT


class HassInvalidAuthError(HassError):
    """Credentials were rejected."""

    code = ERR_INVALID_AUTH


class HassConnectionLostError(HassError):
    """Connection dropped before the command completed."""

    code = ERR_CONNECTION_LOST


class HassHostRequiredError(HassError):
    """No Home Assistant URL was provided."""

    code = ERR_HASS_HOST_REQUIRED


class HassInvalidAuthCallbackError(HassError):
    """Authorization callback state does not match the requested instance."""

    code = ERR_INVALID_AUTH_CALLBACK


class HassCommandError(HassError):
    """The server answered a command with an error result."""

    def __init__(self, code: str | None, message: str | None) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
