"""
Tests for active-token retrieval and refresh.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs

import pytest
from sqlalchemy.exc import OperationalError

from conftest import json_response
from connectors.connection_store import get_connection, upsert_connection
from connectors.schemas import ConnectionRecord
from connectors.token_manager import get_active_token

GOOGLE_TOKEN = "https://oauth2.googleapis.com/token"


async def _store(session, settings, provider="google", expires_in=None, refresh_token="refresh-1"):
    expires_at = None
    if expires_in is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    await upsert_connection(
        session,
        ConnectionRecord(
            user_id="user-1",
            organization_id="org-1",
            provider=provider,
            access_token="access-1",
            refresh_token=refresh_token,
            token_expires_at=expires_at,
        ),
        settings=settings,
    )
    await session.commit()


class TestGetActiveToken:
    @pytest.mark.asyncio
    async def test_not_connected(self, session, settings):
        assert await get_active_token(session, "user-1", "org-1", "google", settings=settings) is None

    @pytest.mark.asyncio
    async def test_fresh_token_returned_without_refresh(self, session, settings, provider_stub):
        await _store(session, settings, expires_in=3600)
        token = await get_active_token(session, "user-1", "org-1", "google", settings=settings)
        assert token == "access-1"
        assert provider_stub.requests == []

    @pytest.mark.asyncio
    async def test_expiring_token_refreshed(self, session, settings, provider_stub):
        provider_stub.add(
            "POST", GOOGLE_TOKEN, json_response(200, {"access_token": "access-2", "expires_in": 3599})
        )
        await _store(session, settings, expires_in=60)

        token = await get_active_token(session, "user-1", "org-1", "google", settings=settings)

        assert token == "access-2"
        (refresh,) = provider_stub.requests_to(GOOGLE_TOKEN)
        form = parse_qs(refresh.content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["refresh-1"]

        record = await get_connection(session, "user-1", "org-1", "google", settings=settings)
        assert record.access_token.get_secret_value() == "access-2"
        assert record.refresh_token.get_secret_value() == "refresh-1"
        assert record.token_expires_at > datetime.now(timezone.utc) + timedelta(minutes=50)

    @pytest.mark.asyncio
    async def test_refresh_failure_returns_none(self, session, settings, provider_stub):
        provider_stub.add("POST", GOOGLE_TOKEN, json_response(400, {"error": "invalid_grant"}))
        await _store(session, settings, expires_in=60)

        assert await get_active_token(session, "user-1", "org-1", "google", settings=settings) is None
        record = await get_connection(session, "user-1", "org-1", "google", settings=settings)
        assert record.access_token.get_secret_value() == "access-1"

    @pytest.mark.asyncio
    async def test_facebook_expired_token_not_refreshed(self, session, settings, provider_stub):
        await _store(session, settings, provider="facebook", expires_in=-10, refresh_token=None)
        assert await get_active_token(session, "user-1", "org-1", "facebook", settings=settings) is None
        assert provider_stub.requests == []

    @pytest.mark.asyncio
    async def test_unknown_expiry_without_refresh_token_returned(self, session, settings, provider_stub):
        await _store(session, settings, provider="linkedin", expires_in=None, refresh_token=None)
        token = await get_active_token(session, "user-1", "org-1", "linkedin", settings=settings)
        assert token == "access-1"
        assert provider_stub.requests == []

    @pytest.mark.asyncio
    async def test_unknown_expiry_refreshed_when_possible(self, session, settings, provider_stub):
        provider_stub.add(
            "POST", GOOGLE_TOKEN, json_response(200, {"access_token": "access-2", "expires_in": 3599})
        )
        await _store(session, settings, expires_in=None)
        token = await get_active_token(session, "user-1", "org-1", "google", settings=settings)
        assert token == "access-2"


class TestRefreshStorageErrors:
    @pytest.mark.asyncio
    async def test_commit_error_keeps_old_token(self, session, settings, provider_stub):
        provider_stub.add(
            "POST", GOOGLE_TOKEN, json_response(200, {"access_token": "access-2", "expires_in": 3599})
        )
        await _store(session, settings, expires_in=60)

        failing = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("db down")))
        with patch.object(session, "commit", failing):
            token = await get_active_token(session, "user-1", "org-1", "google", settings=settings)

        assert token is None
        record = await get_connection(session, "user-1", "org-1", "google", settings=settings)
        assert record.access_token.get_secret_value() == "access-1"
