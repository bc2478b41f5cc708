"""
LinkedInConnector — OAuth2 with OpenID Connect scopes for LinkedIn Ads.
"""

from __future__ import annotations

from typing import Any, Dict, List

import httpx

from connectors.base import BaseConnector
from connectors.schemas import ProviderProfile

_LINKEDIN_AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
_LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
_LINKEDIN_REVOKE_URL = "https://www.linkedin.com/oauth/v2/revoke"
_LINKEDIN_USERINFO_URL = "https://api.linkedin.com/v2/userinfo"


class LinkedInConnector(BaseConnector):
    """OAuth2 connector for LinkedIn."""

    @property
    def provider_name(self) -> str:
        return "linkedin"

    @property
    def display_name(self) -> str:
        return "LinkedIn"

    @property
    def icon(self) -> str:
        return "💼"

    @property
    def authorize_endpoint(self) -> str:
        return _LINKEDIN_AUTH_URL

    @property
    def token_endpoint(self) -> str:
        return _LINKEDIN_TOKEN_URL

    @property
    def revoke_endpoint(self) -> str:
        return _LINKEDIN_REVOKE_URL

    @property
    def userinfo_endpoint(self) -> str:
        return _LINKEDIN_USERINFO_URL

    @property
    def default_scopes(self) -> List[str]:
        return ["openid", "profile", "email"]

    @property
    def client_id(self) -> str:
        return self.settings.linkedin_client_id

    @property
    def client_secret(self) -> str:
        return self.settings.linkedin_client_secret

    def normalize_profile(self, payload: Dict[str, Any]) -> ProviderProfile:
        # OpenID Connect userinfo: ``sub`` is the stable member id
        return ProviderProfile(
            provider_user_id=payload.get("sub"),
            display_name=payload.get("name") or None,
            email=payload.get("email") or None,
            profile_picture_url=payload.get("picture") or None,
        )

    async def _send_revocation(self, client: httpx.AsyncClient, access_token: str) -> httpx.Response:
        return await client.post(
            self.revoke_endpoint,
            data={
                "token": access_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )
