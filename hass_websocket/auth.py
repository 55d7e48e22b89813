"""Access token handling for the Home Assistant WebSocket API."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import aiohttp

from .const import REVOKE_PATH, TOKEN_PATH, WS_PATH
from .exceptions import HassError, HassHostRequiredError, HassInvalidAuthError

_LOGGER = logging.getLogger(__name__)

SaveTokens = Callable[[dict[str, Any] | None], None]


class Auth:
    """Hold OAuth tokens for a Home Assistant instance and refresh them.

    ``data`` uses the token endpoint's field names plus ``hass_url``,
    ``client_id`` and ``expires`` (epoch milliseconds).
    """

    def __init__(
        self,
        data: dict[str, Any],
        session: aiohttp.ClientSession | None = None,
        save_tokens: SaveTokens | None = None,
    ) -> None:
        if not data.get("hass_url"):
            raise HassHostRequiredError("A Home Assistant URL is required")
        self.data = dict(data)
        self.data["hass_url"] = self.data["hass_url"].rstrip("/")
        self._session = session
        self._save_tokens = save_tokens

    @property
    def hass_url(self) -> str:
        return self.data["hass_url"]

    @property
    def ws_url(self) -> str:
        """Convert http:// -> ws:// and https:// -> wss://."""
        return f"ws{self.hass_url[4:]}{WS_PATH}"

    @property
    def access_token(self) -> str:
        return self.data["access_token"]

    @property
    def expired(self) -> bool:
        expires = self.data.get("expires")
        if expires is None:
            return False
        return time.time() * 1000 > expires

    def bind_session(self, session: aiohttp.ClientSession) -> None:
        """Use ``session`` for token requests unless one was given already."""
        if self._session is None:
            self._session = session

    async def refresh_access_token(self) -> None:
        """Exchange the refresh token for a new access token."""
        refresh_token = self.data.get("refresh_token")
        if not refresh_token:
            raise HassError("No refresh_token")
        data = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )
        # The access token response does not contain the refresh token
        data["refresh_token"] = refresh_token
        self.data = data
        _LOGGER.debug("Access token refreshed, expires in %ss", data.get("expires_in"))
        if self._save_tokens:
            self._save_tokens(data)

    async def revoke(self) -> None:
        """Revoke the refresh and access tokens."""
        refresh_token = self.data.get("refresh_token")
        if not refresh_token:
            raise HassError("No refresh_token to revoke")
        form = aiohttp.FormData({"token": refresh_token})
        # Revoke always answers 200, nothing to check
        async with self._get_session().post(
            f"{self.hass_url}{REVOKE_PATH}", data=form
        ):
            pass
        if self._save_tokens:
            self._save_tokens(None)

    async def _token_request(self, fields: dict[str, str]) -> dict[str, Any]:
        client_id = self.data.get("client_id")
        form = aiohttp.FormData()
        if client_id is not None:
            form.add_field("client_id", client_id)
        for key, value in fields.items():
            form.add_field(key, value)

        url = f"{self.hass_url}{TOKEN_PATH}"
        async with self._get_session().post(url, data=form) as resp:
            if resp.status in (400, 403):
                # 400: auth invalid, 403: user not active
                raise HassInvalidAuthError(f"Token request rejected: {resp.status}")
            if resp.status >= 300:
                raise HassError(f"Unable to fetch tokens: {resp.status}")
            tokens = await resp.json(content_type=None)

        tokens["hass_url"] = self.hass_url
        tokens["client_id"] = client_id
        tokens["expires"] = tokens["expires_in"] * 1000 + time.time() * 1000
        return tokens

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise HassError("No aiohttp session bound to Auth")
        return self._session


def create_long_lived_token_auth(
    hass_url: str,
    access_token: str,
    session: aiohttp.ClientSession | None = None,
) -> Auth:
    """Auth for a long-lived access token; it never expires or refreshes."""
    return Auth(
        {
            "hass_url": hass_url,
            "client_id": None,
            "access_token": access_token,
            "expires": None,
            "expires_in": None,
            "refresh_token": "",
        },
        session,
    )
