"""
FacebookConnector — Facebook Login (for Business) for Meta Ads.

Meta issues no refresh token; the access token's lifetime is reported in
``expires_in`` and the user re-connects when it lapses.  Revocation is a
``DELETE /me/permissions`` call authenticated with the token itself.
"""

from __future__ import annotations

from typing import Any, Dict, List

import httpx

from connectors.base import BaseConnector
from connectors.schemas import ProviderProfile

_GRAPH_VERSION = "v22.0"
_FACEBOOK_AUTH_URL = f"https://www.facebook.com/{_GRAPH_VERSION}/dialog/oauth"
_FACEBOOK_TOKEN_URL = f"https://graph.facebook.com/{_GRAPH_VERSION}/oauth/access_token"
_FACEBOOK_PERMISSIONS_URL = f"https://graph.facebook.com/{_GRAPH_VERSION}/me/permissions"
_FACEBOOK_ME_URL = f"https://graph.facebook.com/{_GRAPH_VERSION}/me?fields=id,name,email,picture"


class FacebookConnector(BaseConnector):
    """OAuth2 connector for Meta (Facebook) Ads."""

    supports_refresh = False

    @property
    def provider_name(self) -> str:
        return "facebook"

    @property
    def display_name(self) -> str:
        return "Meta"

    @property
    def icon(self) -> str:
        return "🔵"

    @property
    def authorize_endpoint(self) -> str:
        return _FACEBOOK_AUTH_URL

    @property
    def token_endpoint(self) -> str:
        return _FACEBOOK_TOKEN_URL

    @property
    def revoke_endpoint(self) -> str:
        return _FACEBOOK_PERMISSIONS_URL

    @property
    def userinfo_endpoint(self) -> str:
        return _FACEBOOK_ME_URL

    @property
    def default_scopes(self) -> List[str]:
        return ["public_profile", "email", "ads_management", "ads_read", "business_management"]

    @property
    def client_id(self) -> str:
        return self.settings.facebook_app_id

    @property
    def client_secret(self) -> str:
        return self.settings.facebook_app_secret

    def extra_auth_params(self) -> Dict[str, str]:
        if self.settings.facebook_config_id:
            return {"config_id": self.settings.facebook_config_id}
        return {}

    def token_request_data(self, code: str, code_verifier=None) -> Dict[str, str]:
        # Graph's token endpoint takes no grant_type for the code flow
        data = super().token_request_data(code, code_verifier)
        data.pop("grant_type")
        return data

    def normalize_profile(self, payload: Dict[str, Any]) -> ProviderProfile:
        picture = (payload.get("picture") or {}).get("data") or {}
        return ProviderProfile(
            provider_user_id=payload.get("id"),
            display_name=payload.get("name") or None,
            email=payload.get("email") or None,
            profile_picture_url=picture.get("url") or None,
        )

    async def _send_revocation(self, client: httpx.AsyncClient, access_token: str) -> httpx.Response:
        return await client.delete(
            self.revoke_endpoint, params={"access_token": access_token}
        )
