"""
Tests for the connection store upsert / read / delete.
"""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import func, select

from conftest import make_settings
from connectors.connection_store import (
    delete_connection,
    get_connection,
    list_connections,
    upsert_connection,
)
from connectors.schemas import ConnectionRecord
from database.models import PlatformConnection


def _record(**overrides) -> ConnectionRecord:
    values = dict(
        user_id="user-1",
        organization_id="org-1",
        provider="google",
        access_token="access-1",
        refresh_token="refresh-1",
        scopes=["https://www.googleapis.com/auth/adwords"],
        token_expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        display_name="Ada",
        email="ada@example.com",
    )
    values.update(overrides)
    return ConnectionRecord(**values)


async def _row_count(session) -> int:
    return (await session.execute(select(func.count()).select_from(PlatformConnection))).scalar_one()


class TestUpsert:
    @pytest.mark.asyncio
    async def test_insert_then_read(self, session, settings):
        await upsert_connection(session, _record(), settings=settings)

        record = await get_connection(session, "user-1", "org-1", "google", settings=settings)
        assert record.access_token.get_secret_value() == "access-1"
        assert record.refresh_token.get_secret_value() == "refresh-1"
        assert record.scopes == ["https://www.googleapis.com/auth/adwords"]
        assert record.token_expires_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_repeated_upsert_keeps_one_row_with_latest_values(self, session, settings):
        await upsert_connection(session, _record(), settings=settings)
        await upsert_connection(session, _record(access_token="access-2", display_name="Ada L."), settings=settings)

        assert await _row_count(session) == 1
        record = await get_connection(session, "user-1", "org-1", "google", settings=settings)
        assert record.access_token.get_secret_value() == "access-2"
        assert record.display_name == "Ada L."

    @pytest.mark.asyncio
    async def test_absent_refresh_token_keeps_stored_one(self, session, settings):
        await upsert_connection(session, _record(), settings=settings)
        await upsert_connection(
            session, _record(access_token="access-2", refresh_token=None, email=None), settings=settings
        )

        record = await get_connection(session, "user-1", "org-1", "google", settings=settings)
        assert record.refresh_token.get_secret_value() == "refresh-1"
        assert record.email == "ada@example.com"

    @pytest.mark.asyncio
    async def test_created_at_preserved(self, session, settings):
        first = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await upsert_connection(session, _record(), settings=settings, now=first)
        await upsert_connection(session, _record(access_token="access-2"), settings=settings)

        record = await get_connection(session, "user-1", "org-1", "google", settings=settings)
        assert record.created_at == first
        assert record.updated_at > first

    @pytest.mark.asyncio
    async def test_tuples_are_independent(self, session, settings):
        await upsert_connection(session, _record(), settings=settings)
        await upsert_connection(session, _record(organization_id="org-2"), settings=settings)
        await upsert_connection(session, _record(provider="linkedin"), settings=settings)

        assert await _row_count(session) == 3
        assert len(await list_connections(session, "user-1", "org-1", settings=settings)) == 2

    @pytest.mark.asyncio
    async def test_tokens_encrypted_at_rest(self, session):
        encrypted = make_settings(token_encryption_key=Fernet.generate_key().decode())
        await upsert_connection(session, _record(), settings=encrypted)

        stored = (await session.execute(select(PlatformConnection.access_token))).scalar_one()
        assert stored != "access-1"
        record = await get_connection(session, "user-1", "org-1", "google", settings=encrypted)
        assert record.access_token.get_secret_value() == "access-1"


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_existing(self, session, settings):
        await upsert_connection(session, _record(), settings=settings)
        assert await delete_connection(session, "user-1", "org-1", "google") is True
        assert await get_connection(session, "user-1", "org-1", "google", settings=settings) is None

    @pytest.mark.asyncio
    async def test_delete_missing(self, session):
        assert await delete_connection(session, "user-1", "org-1", "google") is False

    @pytest.mark.asyncio
    async def test_delete_scoped_to_tuple(self, session, settings):
        await upsert_connection(session, _record(), settings=settings)
        await upsert_connection(session, _record(organization_id="org-2"), settings=settings)

        await delete_connection(session, "user-1", "org-1", "google")
        assert await get_connection(session, "user-1", "org-2", "google", settings=settings) is not None
