"""
Tests for the ephemeral authorization-attempt store.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from connectors.flow_store import consume_attempt, purge_expired_attempts, save_attempt
from database.models import AuthorizationAttempt as AttemptRow


async def _count(session) -> int:
    return (await session.execute(select(func.count()).select_from(AttemptRow))).scalar_one()


class TestFlowStore:
    @pytest.mark.asyncio
    async def test_consume_returns_attempt_once(self, session, settings):
        await save_attempt(
            session,
            nonce="n-1",
            organization_id="org-1",
            user_id="user-1",
            provider="tiktok",
            code_verifier="verifier-value",
            settings=settings,
        )
        first = await consume_attempt(session, "n-1", settings=settings)
        assert first is not None
        assert first.organization_id == "org-1"
        assert first.user_id == "user-1"
        assert first.code_verifier.get_secret_value() == "verifier-value"

        assert await consume_attempt(session, "n-1", settings=settings) is None

    @pytest.mark.asyncio
    async def test_ttl_applied(self, session, settings):
        attempt = await save_attempt(
            session, nonce="n-2", organization_id="o", user_id="u", provider="google", settings=settings
        )
        assert attempt.expires_at - attempt.created_at == timedelta(seconds=300)

    @pytest.mark.asyncio
    async def test_expired_attempt_is_absent(self, session, settings):
        created = datetime.now(timezone.utc) - timedelta(seconds=settings.oauth_flow_ttl_seconds + 1)
        await save_attempt(
            session,
            nonce="n-old",
            organization_id="org-1",
            user_id="user-1",
            provider="google",
            settings=settings,
            now=created,
        )
        assert await consume_attempt(session, "n-old", settings=settings) is None
        assert await _count(session) == 0

    @pytest.mark.asyncio
    async def test_unknown_nonce(self, session, settings):
        assert await consume_attempt(session, "never-issued", settings=settings) is None

    @pytest.mark.asyncio
    async def test_saving_purges_expired_rows(self, session, settings):
        long_ago = datetime.now(timezone.utc) - timedelta(hours=1)
        await save_attempt(
            session, nonce="stale", organization_id="o", user_id="u", provider="google",
            settings=settings, now=long_ago,
        )
        await save_attempt(
            session, nonce="fresh", organization_id="o", user_id="u", provider="google", settings=settings
        )
        assert await _count(session) == 1
        assert await purge_expired_attempts(session) == 0

    @pytest.mark.asyncio
    async def test_verifier_encrypted_at_rest(self, session):
        from cryptography.fernet import Fernet

        from conftest import make_settings

        encrypted = make_settings(token_encryption_key=Fernet.generate_key().decode())
        await save_attempt(
            session, nonce="n-enc", organization_id="o", user_id="u", provider="tiktok",
            code_verifier="plain-verifier", settings=encrypted,
        )
        stored = (await session.execute(select(AttemptRow.code_verifier))).scalar_one()
        assert stored != "plain-verifier"
        attempt = await consume_attempt(session, "n-enc", settings=encrypted)
        assert attempt.code_verifier.get_secret_value() == "plain-verifier"
