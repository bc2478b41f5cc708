"""
Connection store — one row per (user_id, organization_id, provider).

``upsert_connection`` is a single ``INSERT ... ON CONFLICT DO UPDATE``
against the unique identity constraint, so concurrent callbacks for the
same tuple (double clicks, replays that slipped past the state check)
can never produce two rows.  Tokens are encrypted before they reach the
database and decrypted on the way out; records returned here carry them
as ``SecretStr`` and must not be handed to UI-facing callers.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from connectors.encryption import get_cipher
from connectors.errors import DeletionFailed, PersistenceFailed
from connectors.schemas import ConnectionRecord
from database.models import PlatformConnection

logger = logging.getLogger(__name__)

_IDENTITY = ["user_id", "organization_id", "provider"]

# Columns that keep their stored value when the new value is NULL
_KEEP_IF_ABSENT = (
    "refresh_token",
    "refresh_expires_at",
    "provider_user_id",
    "display_name",
    "email",
    "profile_picture_url",
    "username",
)
_ALWAYS_REPLACE = (
    "access_token",
    "token_type",
    "scopes",
    "token_expires_at",
    "updated_at",
)


def _dialect_insert(session: AsyncSession):
    name = session.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise PersistenceFailed(f"upsert not supported on dialect '{name}'", step="upsert")
    return insert


def _identity_clause(user_id: str, organization_id: str, provider: str):
    return and_(
        PlatformConnection.user_id == user_id,
        PlatformConnection.organization_id == organization_id,
        PlatformConnection.provider == provider,
    )


def _to_record(row: PlatformConnection, settings: Settings) -> ConnectionRecord:
    cipher = get_cipher(settings)
    return ConnectionRecord(
        user_id=row.user_id,
        organization_id=row.organization_id,
        provider=row.provider,
        access_token=cipher.decrypt(row.access_token),
        refresh_token=cipher.decrypt(row.refresh_token),
        token_type=row.token_type or "Bearer",
        scopes=row.scopes or [],
        token_expires_at=row.token_expires_at,
        refresh_expires_at=row.refresh_expires_at,
        provider_user_id=row.provider_user_id,
        display_name=row.display_name,
        email=row.email,
        profile_picture_url=row.profile_picture_url,
        username=row.username,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def upsert_connection(
    session: AsyncSession,
    record: ConnectionRecord,
    *,
    settings: Settings = config,
    now: Optional[datetime] = None,
) -> None:
    """
    Insert the connection, or update token fields of the existing row for
    the same (user_id, organization_id, provider).  Idempotent per tuple.
    """
    now = now or datetime.now(timezone.utc)
    cipher = get_cipher(settings)
    refresh_token = record.refresh_token.get_secret_value() if record.refresh_token else None

    values: Dict[str, Any] = {
        "id": uuid.uuid4(),
        "user_id": record.user_id,
        "organization_id": record.organization_id,
        "provider": record.provider,
        "access_token": cipher.encrypt(record.access_token.get_secret_value()),
        "refresh_token": cipher.encrypt(refresh_token) if refresh_token else None,
        "token_type": record.token_type,
        "scopes": list(record.scopes),
        "token_expires_at": record.token_expires_at,
        "refresh_expires_at": record.refresh_expires_at,
        "provider_user_id": record.provider_user_id,
        "display_name": record.display_name,
        "email": record.email,
        "profile_picture_url": record.profile_picture_url,
        "username": record.username,
        "created_at": now,
        "updated_at": now,
    }

    insert = _dialect_insert(session)
    stmt = insert(PlatformConnection).values(**values)
    excluded = stmt.excluded
    set_: Dict[str, Any] = {col: excluded[col] for col in _ALWAYS_REPLACE}
    for col in _KEEP_IF_ABSENT:
        set_[col] = func.coalesce(excluded[col], getattr(PlatformConnection, col))
    stmt = stmt.on_conflict_do_update(index_elements=_IDENTITY, set_=set_)

    try:
        await session.execute(stmt)
        await session.flush()
    except SQLAlchemyError as exc:
        logger.error(
            "Upsert failed for %s connection (org %s): %s",
            record.provider,
            record.organization_id,
            type(exc).__name__,
        )
        raise PersistenceFailed(
            "could not store connection", provider=record.provider, step="upsert"
        ) from exc

    logger.info(
        "Stored %s connection for user %s in org %s",
        record.provider,
        record.user_id,
        record.organization_id,
    )


async def get_connection(
    session: AsyncSession,
    user_id: str,
    organization_id: str,
    provider: str,
    *,
    settings: Settings = config,
) -> Optional[ConnectionRecord]:
    """Return the stored connection (with secrets) or None."""
    result = await session.execute(
        select(PlatformConnection).where(_identity_clause(user_id, organization_id, provider))
        # rows may have been rewritten by a Core upsert in this session
        .execution_options(populate_existing=True)
    )
    row = result.scalar_one_or_none()
    return _to_record(row, settings) if row is not None else None


async def list_connections(
    session: AsyncSession,
    user_id: str,
    organization_id: str,
    *,
    settings: Settings = config,
) -> List[ConnectionRecord]:
    result = await session.execute(
        select(PlatformConnection).where(
            PlatformConnection.user_id == user_id,
            PlatformConnection.organization_id == organization_id,
        )
        .execution_options(populate_existing=True)
    )
    return [_to_record(row, settings) for row in result.scalars().all()]


async def delete_connection(
    session: AsyncSession,
    user_id: str,
    organization_id: str,
    provider: str,
) -> bool:
    """
    Delete the connection for the tuple.  Returns False if nothing matched;
    raises ``DeletionFailed`` if the database refuses.
    """
    try:
        result = await session.execute(
            delete(PlatformConnection)
            .where(_identity_clause(user_id, organization_id, provider))
            .execution_options(synchronize_session=False)
        )
        await session.flush()
    except SQLAlchemyError as exc:
        logger.error("Delete failed for %s connection (org %s): %s", provider, organization_id, exc)
        raise DeletionFailed(
            "could not delete connection", provider=provider, step="delete"
        ) from exc
    return (result.rowcount or 0) > 0
