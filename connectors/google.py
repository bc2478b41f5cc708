"""
GoogleConnector — OAuth2 web-server flow for Google Ads.

Requests offline access with forced consent so that Google always returns
a refresh token, even when the user has authorized the app before.
"""

from __future__ import annotations

from typing import Any, Dict, List

from connectors.base import BaseConnector
from connectors.schemas import ProviderProfile

# Google OAuth2 endpoints
_GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class GoogleConnector(BaseConnector):
    """OAuth2 connector for Google Ads."""

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def display_name(self) -> str:
        return "Google Ads"

    @property
    def icon(self) -> str:
        return "🟢"

    @property
    def authorize_endpoint(self) -> str:
        return _GOOGLE_AUTH_URL

    @property
    def token_endpoint(self) -> str:
        return _GOOGLE_TOKEN_URL

    @property
    def revoke_endpoint(self) -> str:
        return _GOOGLE_REVOKE_URL

    @property
    def userinfo_endpoint(self) -> str:
        return _GOOGLE_USERINFO_URL

    @property
    def default_scopes(self) -> List[str]:
        return [
            "https://www.googleapis.com/auth/adwords",
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/userinfo.profile",
        ]

    @property
    def client_id(self) -> str:
        return self.settings.google_client_id

    @property
    def client_secret(self) -> str:
        return self.settings.google_client_secret

    def extra_auth_params(self) -> Dict[str, str]:
        return {
            "access_type": "offline",       # gets refresh_token
            "prompt": "consent",            # force consent to always get refresh_token
        }

    def normalize_profile(self, payload: Dict[str, Any]) -> ProviderProfile:
        return ProviderProfile(
            provider_user_id=payload.get("id"),
            display_name=payload.get("name") or None,
            email=payload.get("email") or None,
            profile_picture_url=payload.get("picture") or None,
        )
