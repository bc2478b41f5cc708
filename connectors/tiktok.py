"""
TikTokConnector — TikTok Login Kit (v2) with mandatory PKCE.

TikTok names the client identifier ``client_key`` everywhere (authorization
URL, token and revoke requests), reports the refresh-token lifetime as
``refresh_expires_in`` and returns the user's ``open_id`` with the tokens.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx

from connectors.base import BaseConnector, normalize_expiry
from connectors.schemas import ProviderProfile, TokenGrant

_TIKTOK_AUTH_URL = "https://www.tiktok.com/v2/auth/authorize/"
_TIKTOK_TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
_TIKTOK_REVOKE_URL = "https://open.tiktokapis.com/v2/oauth/revoke/"
_TIKTOK_USERINFO_URL = (
    "https://open.tiktokapis.com/v2/user/info/?fields=open_id,avatar_url,display_name,username"
)


class TikTokConnector(BaseConnector):
    """OAuth2 + PKCE connector for TikTok."""

    client_id_param = "client_key"
    requires_pkce = True

    @property
    def provider_name(self) -> str:
        return "tiktok"

    @property
    def display_name(self) -> str:
        return "TikTok"

    @property
    def icon(self) -> str:
        return "🎵"

    @property
    def authorize_endpoint(self) -> str:
        return _TIKTOK_AUTH_URL

    @property
    def token_endpoint(self) -> str:
        return _TIKTOK_TOKEN_URL

    @property
    def revoke_endpoint(self) -> str:
        return _TIKTOK_REVOKE_URL

    @property
    def userinfo_endpoint(self) -> str:
        return _TIKTOK_USERINFO_URL

    @property
    def default_scopes(self) -> List[str]:
        return ["user.info.basic"]

    @property
    def client_id(self) -> str:
        return self.settings.tiktok_client_key

    @property
    def client_secret(self) -> str:
        return self.settings.tiktok_client_secret

    def parse_token_response(self, payload: Dict[str, Any]) -> TokenGrant:
        grant = super().parse_token_response(payload)
        grant.refresh_expires_at = normalize_expiry(
            payload, "refresh_expires_in", "refresh_expires_at", now=datetime.now(timezone.utc)
        )
        grant.provider_user_id = payload.get("open_id")
        return grant

    def normalize_profile(self, payload: Dict[str, Any]) -> ProviderProfile:
        error = payload.get("error") or {}
        if not isinstance(error, dict):
            raise ValueError(f"TikTok user info error: {error!r}")
        if error.get("code", "ok") != "ok":
            raise ValueError(f"TikTok user info error: {error.get('code')}")
        user = payload["data"]["user"]
        return ProviderProfile(
            provider_user_id=user.get("open_id"),
            display_name=user.get("display_name") or None,
            profile_picture_url=user.get("avatar_url") or None,
            username=user.get("username") or None,
        )

    async def _send_revocation(self, client: httpx.AsyncClient, access_token: str) -> httpx.Response:
        return await client.post(
            self.revoke_endpoint,
            data={
                "client_key": self.client_id,
                "client_secret": self.client_secret,
                "token": access_token,
            },
            headers={"Cache-Control": "no-cache"},
        )
