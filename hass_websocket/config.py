"""Connection options and their validation schema."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

import voluptuous as vol

from .const import RECONNECT_DELAY, SETUP_RETRY_DELAY

CONF_SETUP_RETRY = "setup_retry"
CONF_SETUP_RETRY_DELAY = "setup_retry_delay"
CONF_RECONNECT_DELAY = "reconnect_delay"
CONF_HEARTBEAT = "heartbeat"

# setup_retry: -1 retries forever, 0 gives up after the first failure
CONNECTION_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_SETUP_RETRY, default=0): vol.All(
            vol.Coerce(int), vol.Range(min=-1)
        ),
        vol.Optional(CONF_SETUP_RETRY_DELAY, default=SETUP_RETRY_DELAY): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),
        vol.Optional(CONF_RECONNECT_DELAY, default=RECONNECT_DELAY): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),
        vol.Optional(CONF_HEARTBEAT, default=None): vol.Any(
            None, vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))
        ),
    }
)


@dataclass(frozen=True)
class ConnectionOptions:
    """Validated options of a connection."""

    setup_retry: int = 0
    setup_retry_delay: float = SETUP_RETRY_DELAY
    reconnect_delay: float = RECONNECT_DELAY
    heartbeat: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None = None) -> ConnectionOptions:
        """Validate ``data`` and fill in defaults.

        Raises ``vol.Invalid`` on unknown keys or out-of-range values.
        """
        return cls(**CONNECTION_SCHEMA(dict(data or {})))

    def replace(self, **changes: Any) -> ConnectionOptions:
        return dataclasses.replace(self, **changes)
