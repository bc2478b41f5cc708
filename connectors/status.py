"""
Status reader — is (user, organization, provider) connected, and as whom?

Only the non-secret projection ever leaves this module.  Every negative
outcome (no session, no organization, no row, unknown provider, database
trouble) collapses to ``isConnected: false`` so a caller cannot tell "not
connected" from "not allowed to know".
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from cachetools import TTLCache
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from connectors.connection_store import get_connection, list_connections
from connectors.registry import ConnectorRegistry
from connectors.schemas import ConnectionRecord, ConnectionStatus

logger = logging.getLogger(__name__)

_StatusKey = Tuple[str, str, str]

# One cache per (size, ttl) pair in use; normally just the process config's.
_status_caches: Dict[Tuple[int, int], TTLCache] = {}


def _status_cache(settings: Settings) -> TTLCache:
    key = (settings.status_cache_size, settings.status_cache_ttl_seconds)
    if key not in _status_caches:
        _status_caches[key] = TTLCache(maxsize=key[0], ttl=key[1])
    return _status_caches[key]


def invalidate_status(user_id: str, organization_id: str, provider: str) -> None:
    """Drop the cached status for one tuple (after connect / refresh / disconnect)."""
    for cache in _status_caches.values():
        cache.pop((user_id, organization_id, provider), None)


def clear_status_cache() -> None:
    for cache in _status_caches.values():
        cache.clear()


def project_status(record: Optional[ConnectionRecord]) -> ConnectionStatus:
    if record is None:
        return ConnectionStatus(isConnected=False)
    return ConnectionStatus(
        isConnected=True,
        displayName=record.display_name,
        email=record.email,
        profilePicture=record.profile_picture_url,
        username=record.username,
    )


async def get_connection_status(
    session: AsyncSession,
    user_id: Optional[str],
    organization_id: Optional[str],
    provider: str,
    *,
    settings: Settings = config,
) -> ConnectionStatus:
    if not user_id or not organization_id:
        return ConnectionStatus(isConnected=False)

    key: _StatusKey = (user_id, organization_id, provider)
    cache = _status_cache(settings)
    cached = cache.get(key)
    if cached is not None:
        return cached.model_copy()

    try:
        record = await get_connection(
            session, user_id, organization_id, provider, settings=settings
        )
    except SQLAlchemyError as exc:
        logger.error("Status read failed for %s (org %s): %s", provider, organization_id, type(exc).__name__)
        return ConnectionStatus(isConnected=False)

    status = project_status(record)
    cache[key] = status
    logger.debug("Status %s/%s: connected=%s", provider, organization_id, status.isConnected)
    return status.model_copy()


async def list_connection_statuses(
    session: AsyncSession,
    user_id: Optional[str],
    organization_id: Optional[str],
    *,
    settings: Settings = config,
) -> Dict[str, ConnectionStatus]:
    """Status for every known provider, configured or not."""
    providers = [p["provider"] for p in ConnectorRegistry().list_providers()]
    statuses = {p: ConnectionStatus(isConnected=False) for p in providers}
    if not user_id or not organization_id:
        return statuses

    try:
        records = await list_connections(session, user_id, organization_id, settings=settings)
    except SQLAlchemyError as exc:
        logger.error("Status listing failed for org %s: %s", organization_id, type(exc).__name__)
        return statuses

    cache = _status_cache(settings)
    for record in records:
        status = project_status(record)
        statuses[record.provider] = status
        cache[(user_id, organization_id, record.provider)] = status
    return statuses
