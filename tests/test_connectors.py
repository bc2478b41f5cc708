"""
Tests for provider-specific wire handling, token encryption and session tokens.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from cryptography.fernet import Fernet

from auth.jwt import InvalidSessionToken, create_token, verify_token
from conftest import json_response, make_settings
from connectors.base import mask_secret, normalize_expiry, parse_scopes
from connectors.encryption import TokenCipher, get_cipher
from connectors.errors import TokenExchangeFailed
from connectors.facebook import FacebookConnector
from connectors.google import GoogleConnector
from connectors.tiktok import TikTokConnector

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestTokenResponseParsing:
    def test_relative_expiry(self):
        assert normalize_expiry({"expires_in": 3600}, "expires_in", "expires_at", now=NOW) == NOW + timedelta(hours=1)

    def test_absolute_expiry_wins(self):
        expiry = normalize_expiry(
            {"expires_in": 10, "expires_at": NOW.timestamp()}, "expires_in", "expires_at", now=NOW
        )
        assert expiry == NOW

    @pytest.mark.parametrize("payload", [{}, {"expires_in": 0}, {"expires_in": ""}])
    def test_unknown_expiry(self, payload):
        assert normalize_expiry(payload, "expires_in", "expires_at", now=NOW) is None

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("openid profile email", ["openid", "profile", "email"]),
            ("user.info.basic,video.list", ["user.info.basic", "video.list"]),
            (["a", "b"], ["a", "b"]),
            (None, []),
        ],
    )
    def test_scopes(self, raw, expected):
        assert parse_scopes(raw) == expected

    def test_tiktok_refresh_expiry_and_open_id(self, settings):
        grant = TikTokConnector(settings).parse_token_response(
            {"access_token": "a", "expires_in": 86400, "refresh_expires_in": 31536000, "open_id": "open-1"}
        )
        assert grant.provider_user_id == "open-1"
        assert grant.refresh_expires_at > grant.expires_at

    def test_facebook_omits_grant_type(self, settings):
        data = FacebookConnector(settings).token_request_data("code-1")
        assert "grant_type" not in data
        assert data["client_id"] == "fb-app"

    @pytest.mark.asyncio
    async def test_facebook_cannot_refresh(self, settings):
        with pytest.raises(TokenExchangeFailed) as exc_info:
            await FacebookConnector(settings).refresh_access_token("r")
        assert exc_info.value.reason == "token_exchange_failed"

    @pytest.mark.asyncio
    async def test_tiktok_exchange_requires_verifier(self, settings, provider_stub):
        with pytest.raises(TokenExchangeFailed):
            await TikTokConnector(settings).exchange_code("code-1")
        assert provider_stub.requests == []

    @pytest.mark.asyncio
    async def test_non_json_token_body(self, settings, provider_stub):
        provider_stub.add("POST", "https://oauth2.googleapis.com/token", httpx.Response(200, text="<html>"))
        with pytest.raises(TokenExchangeFailed) as exc_info:
            await GoogleConnector(settings).exchange_code("code-1")
        assert exc_info.value.reason == "token_exchange_failed"

    @pytest.mark.asyncio
    async def test_unparseable_expiry_field(self, settings, provider_stub):
        provider_stub.add(
            "POST",
            "https://oauth2.googleapis.com/token",
            json_response(200, {"access_token": "a", "expires_in": "soon"}),
        )
        with pytest.raises(TokenExchangeFailed) as exc_info:
            await GoogleConnector(settings).exchange_code("code-1")
        assert exc_info.value.reason == "token_exchange_failed"


class TestProfiles:
    def test_facebook_picture(self, settings):
        profile = FacebookConnector(settings).normalize_profile(
            {"id": "fb-1", "name": "Ada", "picture": {"data": {"url": "https://cdn/p.png"}}}
        )
        assert profile.provider_user_id == "fb-1"
        assert profile.profile_picture_url == "https://cdn/p.png"
        assert profile.email is None

    def test_google_profile(self, settings):
        profile = GoogleConnector(settings).normalize_profile(
            {"id": "g-1", "name": "Ada", "email": "ada@example.com", "picture": "https://cdn/g.png"}
        )
        assert profile.email == "ada@example.com"
        assert profile.profile_picture_url == "https://cdn/g.png"

    @pytest.mark.asyncio
    async def test_tiktok_error_envelope_yields_empty_profile(self, settings, provider_stub):
        provider_stub.add(
            "GET",
            "https://open.tiktokapis.com/v2/user/info/",
            json_response(200, {"data": {}, "error": {"code": "access_token_invalid"}}),
        )
        profile = await TikTokConnector(settings).fetch_profile("tt-access")
        assert profile.model_dump(exclude_none=True) == {}

    @pytest.mark.asyncio
    async def test_tiktok_string_error_yields_empty_profile(self, settings, provider_stub):
        provider_stub.add(
            "GET",
            "https://open.tiktokapis.com/v2/user/info/",
            json_response(200, {"data": {}, "error": "bad"}),
        )
        profile = await TikTokConnector(settings).fetch_profile("tt-access")
        assert profile.model_dump(exclude_none=True) == {}


class TestTokenCipher:
    def test_round_trip(self):
        cipher = TokenCipher(Fernet.generate_key().decode())
        token = cipher.encrypt("secret")
        assert token != "secret"
        assert cipher.decrypt(token) == "secret"

    def test_disabled_passes_through(self):
        cipher = TokenCipher("")
        assert not cipher.enabled
        assert cipher.encrypt("secret") == "secret"

    def test_legacy_plaintext_read(self):
        cipher = TokenCipher(Fernet.generate_key().decode())
        assert cipher.decrypt("not-encrypted") == "not-encrypted"

    def test_bad_key_fails_fast(self):
        with pytest.raises(ValueError):
            TokenCipher("not-a-fernet-key")

    def test_cipher_cached_per_key(self):
        key = Fernet.generate_key().decode()
        assert get_cipher(make_settings(token_encryption_key=key)) is get_cipher(
            make_settings(token_encryption_key=key)
        )


class TestSessionTokens:
    def test_round_trip(self, settings):
        assert verify_token(create_token("user-1", settings=settings), settings=settings) == "user-1"

    def test_forged_signature(self, settings):
        token = create_token("user-1", settings=settings)
        with pytest.raises(InvalidSessionToken):
            verify_token(token[:-1] + ("0" if token[-1] != "0" else "1"), settings=settings)

    def test_expired(self):
        expired = make_settings(jwt_expiry_seconds=-10)
        with pytest.raises(InvalidSessionToken):
            verify_token(create_token("user-1", settings=expired), settings=expired)


class TestMasking:
    def test_mask_secret(self):
        assert mask_secret("abcdefghijklmnop") == "abcdef…"
        assert mask_secret("abc") == "…"
        assert mask_secret(None) == "missing"
