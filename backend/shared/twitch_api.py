"""Twitch Helix client for the live-status and clip lookups.

Only app access tokens are used: streams, clips and users are public
endpoints. The token is fetched with client credentials and cached until
five minutes before it expires.
"""

import asyncio
import logging
import time
from typing import Any, cast

import httpx

logger = logging.getLogger(__name__)

HELIX_BASE = "https://api.twitch.tv/helix"
OAUTH_BASE = "https://id.twitch.tv/oauth2"

# Helix accepts at most 100 ids per multi-id request
HELIX_PAGE_SIZE = 100


class TwitchAPIError(Exception):
    """Raised when Helix or the OAuth endpoint answers with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _chunks(items: list[str], size: int = HELIX_PAGE_SIZE) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class TwitchAPIClient:
    """Client for the Twitch Helix API.

    Holds one shared httpx client for connection reuse. Pass *http* to
    supply a preconfigured client (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        http: httpx.AsyncClient | None = None,
    ):
        if not client_id or not client_secret:
            raise ValueError("Twitch client_id and client_secret are required")

        self.client_id = client_id
        self.client_secret = client_secret

        self._http = http or httpx.AsyncClient(timeout=10.0)

        self._app_token: str | None = None
        self._app_token_expires_at: float = 0.0
        self._app_token_lock = asyncio.Lock()

    async def close(self) -> None:
        """Close the shared HTTP client. Call on shutdown."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_app_token(self) -> str:
        """Return a cached app access token, refreshing only when expired."""
        now = time.monotonic()
        if self._app_token and now < self._app_token_expires_at:
            return self._app_token

        async with self._app_token_lock:
            now = time.monotonic()
            if self._app_token and now < self._app_token_expires_at:
                return self._app_token

            try:
                response = await self._http.post(
                    f"{OAUTH_BASE}/token",
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "grant_type": "client_credentials",
                    },
                )
            except httpx.HTTPError as e:
                raise TwitchAPIError(f"App token request failed: {e}") from e

            if response.status_code != 200:
                raise TwitchAPIError(
                    f"App token request returned {response.status_code}",
                    response.status_code,
                )

            data = response.json()
            self._app_token = data.get("access_token")
            if not self._app_token:
                raise TwitchAPIError("App token response had no access_token")
            expires_in = data.get("expires_in", 0)
            self._app_token_expires_at = now + max(expires_in - 300, 0)
            return self._app_token

    async def _helix_get(self, path: str, params: dict[str, Any]) -> list[dict]:
        """GET a Helix endpoint and return its ``data`` array."""
        token = await self._ensure_app_token()
        try:
            response = await self._http.get(
                f"{HELIX_BASE}/{path}",
                params=params,
                headers={"Authorization": f"Bearer {token}", "Client-Id": self.client_id},
            )
        except httpx.HTTPError as e:
            raise TwitchAPIError(f"Helix GET /{path} failed: {e}") from e

        if response.status_code == 401:
            # Revoked or rotated app token; fetch a new one on the next call
            self._app_token = None
        if response.status_code != 200:
            raise TwitchAPIError(
                f"Helix GET /{path} returned {response.status_code}", response.status_code
            )
        return cast(list[dict], response.json().get("data", []))

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_streams(self, user_ids: list[str]) -> list[dict]:
        """Return the live streams among *user_ids*. Offline ids are absent."""
        streams: list[dict] = []
        for chunk in _chunks(list(dict.fromkeys(user_ids))):
            streams.extend(
                await self._helix_get("streams", {"user_id": chunk, "first": len(chunk)})
            )
        return streams

    async def get_clips(self, broadcaster_id: str, first: int = 5) -> list[dict]:
        """Get the most recent clips of a broadcaster."""
        return await self._helix_get(
            "clips", {"broadcaster_id": broadcaster_id, "first": min(max(first, 1), 100)}
        )
