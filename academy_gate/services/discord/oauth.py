"""
Discord OAuth2 connect flow: authorize URL, code exchange, identity lookup.
The access token it yields is what GuildClient.add_member needs (guilds.join scope).
"""
import logging
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from academy_gate.core.config import settings
from academy_gate.core.errors import OAuthExchangeError

logger = logging.getLogger(__name__)

DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
DISCORD_CDN = "https://cdn.discordapp.com"


class DiscordIdentity(BaseModel):
    id: str
    username: str
    avatar_url: str | None = None

    model_config = {"frozen": True}


class DiscordOAuthClient:
    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        self._base_url = settings.discord_api_base
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=settings.discord_request_timeout, transport=self._transport)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def build_authorize_url(self, state: str = "discord_connect") -> str:
        params = {
            "client_id": settings.discord_client_id,
            "redirect_uri": settings.discord_redirect_uri,
            "response_type": "code",
            "scope": settings.discord_oauth_scope,
            "state": state,
        }
        return f"{DISCORD_AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> str:
        """Trade the authorization code for a user access token."""
        if not code:
            raise OAuthExchangeError("authorization code is required")
        try:
            resp = self.client.post(
                f"{self._base_url}/oauth2/token",
                data={
                    "client_id": settings.discord_client_id,
                    "client_secret": settings.discord_client_secret,
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": settings.discord_redirect_uri,
                },
            )
        except httpx.HTTPError as e:
            raise OAuthExchangeError(f"token exchange failed: {type(e).__name__}") from e
        if not resp.is_success:
            logger.warning("discord_token_exchange_failed", extra={"status_code": resp.status_code, "error": resp.text[:200]})
            raise OAuthExchangeError("failed to exchange Discord code", status_code=resp.status_code)
        access_token = resp.json().get("access_token")
        if not access_token:
            raise OAuthExchangeError("token response has no access_token", status_code=resp.status_code)
        return access_token

    def fetch_identity(self, access_token: str) -> DiscordIdentity:
        try:
            resp = self.client.get(
                f"{self._base_url}/users/@me",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise OAuthExchangeError(f"identity lookup failed: {type(e).__name__}") from e
        if not resp.is_success:
            raise OAuthExchangeError("failed to fetch Discord user info", status_code=resp.status_code)
        data = resp.json()
        discord_id = str(data["id"])
        avatar = data.get("avatar")
        return DiscordIdentity(
            id=discord_id,
            username=data.get("username") or "",
            avatar_url=f"{DISCORD_CDN}/avatars/{discord_id}/{avatar}.png" if avatar else None,
        )
