"""
Token manager — get / refresh / disconnect per-organization OAuth connections.

This is the single interface that platform API code uses to get an active
token for a (user, organization, provider) combination, and the place where
connections are torn down.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from connectors.connection_store import delete_connection, get_connection, upsert_connection
from connectors.errors import (
    ConnectionNotFound,
    ConnectorError,
    DeletionFailed,
    MissingOrganization,
    NotAuthenticated,
    PersistenceFailed,
)
from connectors.registry import ConnectorRegistry
from connectors.schemas import ConnectionRecord, DisconnectResult, RevocationResult
from connectors.status import invalidate_status

logger = logging.getLogger(__name__)


async def refresh_connection(
    session: AsyncSession,
    record: ConnectionRecord,
    *,
    settings: Settings = config,
) -> ConnectionRecord:
    """
    Refresh ``record`` at its provider and store the result through the
    regular upsert path.  Raises ``TokenExchangeFailed`` /
    ``PersistenceFailed``; the stored row is left untouched on failure.
    """
    connector = ConnectorRegistry().require(record.provider)
    grant = await connector.refresh_access_token(record.refresh_token.get_secret_value())

    refreshed = record.model_copy(
        update={
            "access_token": grant.access_token,
            # some providers rotate refresh tokens
            "refresh_token": grant.refresh_token or record.refresh_token,
            "token_type": grant.token_type,
            "token_expires_at": grant.expires_at,
            "refresh_expires_at": grant.refresh_expires_at or record.refresh_expires_at,
            "scopes": grant.scopes or record.scopes,
        }
    )
    await upsert_connection(session, refreshed, settings=settings)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceFailed(
            "could not store refreshed token", provider=record.provider, step="refresh_token"
        ) from exc
    invalidate_status(record.user_id, record.organization_id, record.provider)
    logger.info("Refreshed %s token for org %s", record.provider, record.organization_id)
    return refreshed


async def get_active_token(
    session: AsyncSession,
    user_id: str,
    organization_id: str,
    provider: str,
    *,
    settings: Settings = config,
) -> Optional[str]:
    """
    Get a usable access token for the tuple, or None if not connected.

    Tokens expiring within ``token_refresh_margin_seconds``, or whose expiry
    is unknown, are refreshed when the provider supports it and a usable
    refresh token is stored.  An unknown-expiry token that cannot be
    refreshed is returned as-is; the caller's API request validates it.
    """
    record = await get_connection(session, user_id, organization_id, provider, settings=settings)
    if record is None:
        return None
    if not record.needs_revalidation(settings.token_refresh_margin_seconds):
        return record.access_token.get_secret_value()

    connector = ConnectorRegistry().get(provider)
    can_refresh = (
        connector is not None
        and connector.supports_refresh
        and record.refresh_token_usable()
    )
    if not can_refresh:
        if record.token_expires_at is None:
            return record.access_token.get_secret_value()
        logger.warning(
            "%s token for org %s is expiring and cannot be refreshed; reconnect required",
            provider,
            organization_id,
        )
        return None

    try:
        refreshed = await refresh_connection(session, record, settings=settings)
    except ConnectorError as exc:
        logger.warning("Token refresh failed for %s/%s: %s", provider, organization_id, exc.reason)
        await session.rollback()
        return None
    return refreshed.access_token.get_secret_value()


async def disconnect(
    session: AsyncSession,
    user_id: str,
    organization_id: str,
    provider: str,
    *,
    settings: Settings = config,
) -> RevocationResult:
    """
    Revoke (best effort) and delete a connection.

    1. Load the connection; ``ConnectionNotFound`` if absent.
    2. Attempt provider-side revocation; its outcome is logged, never raised.
    3. Delete the local row once revocation has been *attempted*;
       ``DeletionFailed`` only if the delete itself fails.
    4. Invalidate the cached status for the tuple.
    """
    try:
        record = await get_connection(
            session, user_id, organization_id, provider, settings=settings
        )
    except SQLAlchemyError as exc:
        logger.error("Load failed for %s connection (org %s): %s", provider, organization_id, type(exc).__name__)
        raise PersistenceFailed(
            "could not load connection", provider=provider, step="load"
        ) from exc
    if record is None:
        raise ConnectionNotFound(
            f"no {provider} connection for this organization",
            provider=provider,
            step="load",
        )

    revocation = RevocationResult(attempted=False, detail="no access token stored")
    access_token = record.access_token.get_secret_value()
    if access_token:
        connector = ConnectorRegistry().get(provider)
        if connector is None:
            revocation = RevocationResult(attempted=False, detail="provider not configured")
        else:
            revocation = await connector.revoke_token(access_token)

    if revocation.attempted and not revocation.succeeded:
        logger.warning(
            "%s token revocation failed for org %s (%s); removing local credentials anyway",
            provider,
            organization_id,
            revocation.detail,
        )
    else:
        logger.info("%s revocation: %s", provider, revocation.detail)

    try:
        await delete_connection(session, user_id, organization_id, provider)
        await session.commit()
    except DeletionFailed:
        await session.rollback()
        raise
    except SQLAlchemyError as exc:
        logger.error("Commit failed deleting %s connection (org %s): %s", provider, organization_id, type(exc).__name__)
        await session.rollback()
        raise DeletionFailed(
            "could not delete connection", provider=provider, step="delete"
        ) from exc
    finally:
        invalidate_status(user_id, organization_id, provider)

    logger.info("Disconnected %s for user %s in org %s", provider, user_id, organization_id)
    return revocation


async def disconnect_provider(
    session: AsyncSession,
    user_id: Optional[str],
    organization_id: Optional[str],
    provider: str,
    *,
    settings: Settings = config,
) -> DisconnectResult:
    """Entry-point wrapper: never raises ``ConnectorError``, returns ``{success, error}``."""
    try:
        if not user_id:
            raise NotAuthenticated(provider=provider, step="disconnect")
        if not organization_id:
            raise MissingOrganization(provider=provider, step="disconnect")
        revocation = await disconnect(
            session, user_id, organization_id, provider, settings=settings
        )
    except ConnectorError as exc:
        logger.info("Disconnect %s failed: %s", provider, exc.reason)
        return DisconnectResult(success=False, error=exc.reason)
    return DisconnectResult(success=True, revocation=revocation)
