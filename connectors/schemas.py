"""
Pydantic schemas for the connection lifecycle.

Tokens are carried as ``SecretStr`` so that an accidental ``repr`` / log /
JSON dump of any of these objects never prints them.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, SecretStr


class Provider(str, Enum):
    GOOGLE = "google"
    FACEBOOK = "facebook"
    LINKEDIN = "linkedin"
    TIKTOK = "tiktok"


# ═══════════════════════════════════════════════════════════════════════════════
# Provider responses (normalized)
# ═══════════════════════════════════════════════════════════════════════════════


class TokenGrant(BaseModel):
    """Output of a code exchange or refresh, expiry already absolute."""

    access_token: SecretStr
    refresh_token: Optional[SecretStr] = None
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)
    provider_user_id: Optional[str] = None


class ProviderProfile(BaseModel):
    """Informational only, never used for authorization decisions."""

    provider_user_id: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    profile_picture_url: Optional[str] = None
    username: Optional[str] = None


class RevocationResult(BaseModel):
    attempted: bool = False
    succeeded: bool = False
    detail: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Stored records
# ═══════════════════════════════════════════════════════════════════════════════


class ConnectionRecord(BaseModel):
    """One connection per (user_id, organization_id, provider)."""

    user_id: str
    organization_id: str
    provider: str
    access_token: SecretStr
    refresh_token: Optional[SecretStr] = None
    token_type: str = "Bearer"
    scopes: List[str] = Field(default_factory=list)
    token_expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    provider_user_id: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    profile_picture_url: Optional[str] = None
    username: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_grant(
        cls,
        user_id: str,
        organization_id: str,
        provider: str,
        grant: TokenGrant,
        profile: Optional[ProviderProfile] = None,
    ) -> "ConnectionRecord":
        profile = profile or ProviderProfile()
        return cls(
            user_id=user_id,
            organization_id=organization_id,
            provider=provider,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            token_type=grant.token_type,
            scopes=grant.scopes,
            token_expires_at=grant.expires_at,
            refresh_expires_at=grant.refresh_expires_at,
            provider_user_id=profile.provider_user_id or grant.provider_user_id,
            display_name=profile.display_name,
            email=profile.email,
            profile_picture_url=profile.profile_picture_url,
            username=profile.username,
        )

    def needs_revalidation(self, margin_seconds: int, now: Optional[datetime] = None) -> bool:
        """True when the token is (nearly) expired or its expiry is unknown."""
        if self.token_expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return self.token_expires_at <= now + timedelta(seconds=margin_seconds)

    def refresh_token_usable(self, now: Optional[datetime] = None) -> bool:
        if self.refresh_token is None or not self.refresh_token.get_secret_value():
            return False
        if self.refresh_expires_at is None:
            return True
        return self.refresh_expires_at > (now or datetime.now(timezone.utc))


class AuthorizationAttempt(BaseModel):
    """Ephemeral, single-use record of one in-flight authorization."""

    nonce: str
    organization_id: str
    user_id: str
    provider: str
    code_verifier: Optional[SecretStr] = None
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or datetime.now(timezone.utc))


# ═══════════════════════════════════════════════════════════════════════════════
# API responses
# ═══════════════════════════════════════════════════════════════════════════════


class AuthUrlResponse(BaseModel):
    auth_url: str
    provider: str


class ConnectionStatus(BaseModel):
    """Non-secret projection of a connection."""

    isConnected: bool = False
    displayName: Optional[str] = None
    email: Optional[str] = None
    profilePicture: Optional[str] = None
    username: Optional[str] = None


class DisconnectResult(BaseModel):
    success: bool
    error: Optional[str] = None
    revocation: Optional[RevocationResult] = Field(default=None, exclude=True)


class CallbackStage(str, Enum):
    RECEIVED_CALLBACK = "received_callback"
    STATE_VALIDATED = "state_validated"
    CODE_EXCHANGED = "code_exchanged"
    CONNECTION_PERSISTED = "connection_persisted"
    REDIRECTED = "redirected"
    FAILED = "failed"


class CallbackOutcome(BaseModel):
    stage: CallbackStage
    redirect_path: str
    provider: str
    organization_id: Optional[str] = None
    reason: Optional[str] = None
    description: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.stage == CallbackStage.REDIRECTED
