"""
BaseConnector — common interface for every advertising-platform connector.

Every provider (Google, Meta, LinkedIn, TikTok) subclasses this and fills in
its endpoints plus the few places where its wire format differs
(``normalize_profile``, ``token_request_data``, ``_send_revocation``).
The shared OAuth2 mechanics (URL building, the token POST, expiry
normalization and best-effort revocation) live here once.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config.settings import Settings, config
from connectors.errors import ProviderNotConfigured, TokenExchangeFailed
from connectors.schemas import ProviderProfile, RevocationResult, TokenGrant

logger = logging.getLogger(__name__)


def mask_secret(value: Optional[str], keep: int = 6) -> str:
    """Short, log-safe prefix of an authorization code or token."""
    if not value:
        return "missing"
    return f"{value[:keep]}…" if len(value) > keep else "…"


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    #: query/body parameter name for the client identifier
    client_id_param: str = "client_id"
    requires_pkce: bool = False
    supports_refresh: bool = True

    def __init__(self, settings: Settings = config) -> None:
        self.settings = settings

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'google', 'facebook', 'linkedin', 'tiktok'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    def icon(self) -> str:
        """Optional emoji / icon for UI."""
        return "🔗"

    # ── Descriptor ──────────────────────────────────────────────────────
    @property
    @abstractmethod
    def authorize_endpoint(self) -> str:
        ...

    @property
    @abstractmethod
    def token_endpoint(self) -> str:
        ...

    @property
    def revoke_endpoint(self) -> Optional[str]:
        return None

    @property
    def userinfo_endpoint(self) -> Optional[str]:
        return None

    @property
    @abstractmethod
    def default_scopes(self) -> List[str]:
        ...

    @property
    def scopes(self) -> List[str]:
        return self.settings.scopes_for(self.provider_name, self.default_scopes)

    @property
    @abstractmethod
    def client_id(self) -> str:
        ...

    @property
    @abstractmethod
    def client_secret(self) -> str:
        ...

    def is_configured(self) -> bool:
        """True if client credentials are present in the settings."""
        return bool(self.client_id and self.client_secret)

    def ensure_configured(self) -> None:
        if not self.is_configured():
            raise ProviderNotConfigured(
                f"{self.display_name} client credentials are not configured",
                provider=self.provider_name,
                step="configuration",
            )

    def redirect_uri(self) -> str:
        return self.settings.redirect_uri_for(self.provider_name)

    # ── Authorization URL ───────────────────────────────────────────────

    def extra_auth_params(self) -> Dict[str, str]:
        """Provider-specific query parameters appended to the authorization URL."""
        return {}

    def get_auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Encoded ``<nonce>__<organization_id>`` state.
        code_challenge : str, optional
            S256 PKCE challenge; mandatory for providers with ``requires_pkce``.
        """
        self.ensure_configured()
        if self.requires_pkce and not code_challenge:
            raise ValueError(f"{self.provider_name} requires a PKCE code challenge")

        params = {
            self.client_id_param: self.client_id,
            "redirect_uri": self.redirect_uri(),
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        params.update(self.extra_auth_params())
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    # ── Code exchange / refresh ─────────────────────────────────────────

    def token_request_data(self, code: str, code_verifier: Optional[str] = None) -> Dict[str, str]:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            self.client_id_param: self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri(),
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        return data

    def refresh_request_data(self, refresh_token: str) -> Dict[str, str]:
        return {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            self.client_id_param: self.client_id,
            "client_secret": self.client_secret,
        }

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenGrant:
        """Exchange the authorization code (plus PKCE verifier) for tokens."""
        self.ensure_configured()
        if self.requires_pkce and not code_verifier:
            raise TokenExchangeFailed(
                None, "missing PKCE verifier", provider=self.provider_name
            )
        logger.info(
            "Exchanging %s authorization code %s",
            self.provider_name,
            mask_secret(code),
        )
        payload = await self._post_token_request(
            self.token_request_data(code, code_verifier), step="exchange_code"
        )
        return self._grant_from_payload(payload, step="exchange_code")

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Use a refresh token to obtain a new access token."""
        self.ensure_configured()
        if not self.supports_refresh:
            raise TokenExchangeFailed(
                None, "refresh not supported", provider=self.provider_name, step="refresh_token"
            )
        payload = await self._post_token_request(
            self.refresh_request_data(refresh_token), step="refresh_token"
        )
        return self._grant_from_payload(payload, step="refresh_token")

    def parse_token_response(self, payload: Dict[str, Any]) -> TokenGrant:
        now = datetime.now(timezone.utc)
        return TokenGrant(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or None,
            token_type=payload.get("token_type") or "Bearer",
            expires_at=normalize_expiry(payload, "expires_in", "expires_at", now=now),
            refresh_expires_at=normalize_expiry(
                payload, "refresh_token_expires_in", "refresh_token_expires_at", now=now
            ),
            scopes=parse_scopes(payload.get("scope")),
        )

    def _grant_from_payload(self, payload: Dict[str, Any], step: str) -> TokenGrant:
        try:
            return self.parse_token_response(payload)
        except (ValueError, TypeError, OverflowError) as exc:
            logger.error("%s %s returned unparseable fields: %s", self.provider_name, step, type(exc).__name__)
            raise TokenExchangeFailed(
                None, "unparseable token response", provider=self.provider_name, step=step
            ) from exc

    async def _post_token_request(self, data: Dict[str, str], step: str) -> Dict[str, Any]:
        """
        POST to the token endpoint and return the decoded JSON body.

        Any non-2xx status, transport error, timeout, non-JSON body or
        ``error`` member in a 2xx body raises ``TokenExchangeFailed``.
        The failed attempt is never retried: authorization codes are single-use.
        """
        try:
            async with self._http_client() as client:
                resp = await client.post(
                    self.token_endpoint,
                    data=data,
                    headers={"Accept": "application/json", "Cache-Control": "no-cache"},
                )
        except httpx.TimeoutException:
            logger.error("%s %s timed out", self.provider_name, step)
            raise TokenExchangeFailed(None, "timeout", provider=self.provider_name, step=step)
        except httpx.HTTPError as exc:
            logger.error("%s %s transport error: %s", self.provider_name, step, exc)
            raise TokenExchangeFailed(
                None, type(exc).__name__, provider=self.provider_name, step=step
            )

        if not resp.is_success:
            logger.error("%s %s failed: HTTP %s", self.provider_name, step, resp.status_code)
            raise TokenExchangeFailed(
                resp.status_code, resp.text, provider=self.provider_name, step=step
            )
        try:
            payload = resp.json()
        except ValueError:
            raise TokenExchangeFailed(
                resp.status_code, "non-JSON token response", provider=self.provider_name, step=step
            )
        if not isinstance(payload, dict) or payload.get("error") or not payload.get("access_token"):
            logger.error("%s %s returned an error payload", self.provider_name, step)
            raise TokenExchangeFailed(
                resp.status_code, resp.text, provider=self.provider_name, step=step
            )
        return payload

    # ── Profile ─────────────────────────────────────────────────────────

    @abstractmethod
    def normalize_profile(self, payload: Dict[str, Any]) -> ProviderProfile:
        """Map the provider's user-info payload to a ``ProviderProfile``."""
        ...

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        """
        Query the user-info endpoint.  Profile data is informational, so any
        failure is logged and an empty profile returned.
        """
        if not self.userinfo_endpoint:
            return ProviderProfile()
        try:
            async with self._http_client() as client:
                resp = await client.get(
                    self.userinfo_endpoint,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                )
            resp.raise_for_status()
            return self.normalize_profile(resp.json())
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning(
                "%s user info unavailable (%s); storing connection without profile",
                self.provider_name,
                type(exc).__name__,
            )
            return ProviderProfile()

    # ── Revocation ──────────────────────────────────────────────────────

    async def _send_revocation(self, client: httpx.AsyncClient, access_token: str) -> httpx.Response:
        """Default RFC 7009 style form POST; providers override as needed."""
        return await client.post(self.revoke_endpoint, data={"token": access_token})

    async def revoke_token(self, access_token: str) -> RevocationResult:
        """
        Revoke the token at the provider.  Never raises: the outcome is
        reported as a ``RevocationResult`` for the caller to log.
        """
        if not self.revoke_endpoint:
            return RevocationResult(attempted=False, detail="provider has no revocation endpoint")
        try:
            async with self._http_client() as client:
                resp = await self._send_revocation(client, access_token)
        except httpx.TimeoutException:
            return RevocationResult(attempted=True, succeeded=False, detail="timeout")
        except httpx.HTTPError as exc:
            return RevocationResult(attempted=True, succeeded=False, detail=type(exc).__name__)
        if not resp.is_success:
            return RevocationResult(
                attempted=True, succeeded=False, detail=f"HTTP {resp.status_code}"
            )
        return RevocationResult(attempted=True, succeeded=True, detail=f"HTTP {resp.status_code}")

    # ── Helpers ─────────────────────────────────────────────────────────

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.oauth_http_timeout_seconds)


def normalize_expiry(
    payload: Dict[str, Any],
    relative_key: str,
    absolute_key: str,
    *,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Absolute UTC expiry from either seconds-until-expiry or an epoch timestamp.
    Returns None when the provider reports neither (unknown / non-expiring).
    """
    absolute = payload.get(absolute_key)
    if absolute not in (None, ""):
        return datetime.fromtimestamp(float(absolute), tz=timezone.utc)
    relative = payload.get(relative_key)
    if relative in (None, ""):
        return None
    seconds = float(relative)
    if seconds <= 0:
        # Meta reports 0 for tokens without a fixed lifetime
        return None
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=seconds)


def parse_scopes(value: Any) -> List[str]:
    """Scopes arrive space-separated (Google) or comma-separated (LinkedIn, TikTok)."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [s for s in re.split(r"[,\s]+", str(value)) if s]
