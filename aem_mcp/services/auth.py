"""
Authentication headers for AEM requests.

Supports basic auth, a static bearer token, and the OAuth client
credentials flow against Adobe IMS (token cached until shortly before
it expires).
"""

import asyncio
import base64
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import httpx
from loguru import logger

from aem_mcp.services.errors import AuthenticationError

IMS_TOKEN_URL = "https://ims-na1.adobelogin.com/ims/token/v3"
IMS_SCOPE = "openid,AdobeID,read_organizations,additional_info.projectedProductContext"
TOKEN_REFRESH_MARGIN = 60.0  # Seconds before expiry a token is considered stale


class AuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    TOKEN = "token"
    OAUTH = "oauth"


@dataclass
class Credentials:
    """Credentials for the AEM instance."""

    type: AuthType = AuthType.NONE
    username: str | None = None
    password: str | None = None
    access_token: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    token_url: str = IMS_TOKEN_URL
    scope: str = IMS_SCOPE


class TokenProvider:
    """Builds the Authorization header, refreshing OAuth tokens as needed."""

    def __init__(
        self,
        credentials: Credentials,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.credentials = credentials
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def get_headers(self, http_client: httpx.AsyncClient) -> dict[str, str]:
        creds = self.credentials

        if creds.type == AuthType.BASIC:
            raw = f"{creds.username}:{creds.password}".encode()
            return {"Authorization": f"Basic {base64.b64encode(raw).decode()}"}

        if creds.type == AuthType.TOKEN and creds.access_token:
            return {"Authorization": f"Bearer {creds.access_token}"}

        if creds.type == AuthType.OAUTH:
            token = await self._get_oauth_token(http_client)
            return {"Authorization": f"Bearer {token}"}

        return {}

    def invalidate(self) -> None:
        """Forget the cached OAuth token, e.g. after AEM rejected it."""
        self._token = None
        self._expires_at = 0.0

    async def _get_oauth_token(self, http_client: httpx.AsyncClient) -> str:
        async with self._lock:
            if self._token and self._clock() < self._expires_at:
                return self._token

            creds = self.credentials
            if not creds.client_id or not creds.client_secret:
                raise AuthenticationError("OAuth client id and secret are required")

            logger.debug("Refreshing OAuth token")
            try:
                response = await http_client.post(
                    creds.token_url,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": creds.client_id,
                        "client_secret": creds.client_secret,
                        "scope": creds.scope,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise AuthenticationError(f"OAuth token refresh failed: {e}", cause=e) from e

            token = payload.get("access_token") if isinstance(payload, dict) else None
            if not token:
                raise AuthenticationError("Invalid OAuth response: missing access token")

            expires_in = float(payload.get("expires_in", 3600))
            self._token = token
            self._expires_at = self._clock() + max(0.0, expires_in - TOKEN_REFRESH_MARGIN)
            logger.debug(f"OAuth token refreshed, expires in {expires_in:.0f}s")
            return token
