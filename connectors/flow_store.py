"""
Ephemeral flow store — short-lived, single-use authorization attempts.

One row per in-flight authorization, keyed by the state nonce.  The row is
written by the authorization-URL builder and consumed exactly once by the
callback: consumption is a single ``DELETE ... RETURNING`` so that of two
concurrent (or replayed) callbacks only one ever sees the attempt.  Rows
past their TTL are treated as absent and purged whenever a new attempt is
saved.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from connectors.encryption import get_cipher
from connectors.schemas import AuthorizationAttempt
from database.models import AuthorizationAttempt as AttemptRow

logger = logging.getLogger(__name__)


async def purge_expired_attempts(
    session: AsyncSession,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Delete attempts whose TTL has elapsed.  Returns the number removed."""
    now = now or datetime.now(timezone.utc)
    result = await session.execute(
        delete(AttemptRow)
        .where(AttemptRow.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def save_attempt(
    session: AsyncSession,
    *,
    nonce: str,
    organization_id: str,
    user_id: str,
    provider: str,
    code_verifier: Optional[str] = None,
    settings: Settings = config,
    now: Optional[datetime] = None,
) -> AuthorizationAttempt:
    """Persist a new attempt that expires after ``oauth_flow_ttl_seconds``."""
    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=settings.oauth_flow_ttl_seconds)

    purged = await purge_expired_attempts(session, now=now)
    if purged:
        logger.debug("Purged %d expired authorization attempts", purged)

    session.add(
        AttemptRow(
            nonce=nonce,
            organization_id=organization_id,
            user_id=user_id,
            provider=provider,
            code_verifier=get_cipher(settings).encrypt(code_verifier),
            created_at=now,
            expires_at=expires_at,
        )
    )
    await session.flush()

    return AuthorizationAttempt(
        nonce=nonce,
        organization_id=organization_id,
        user_id=user_id,
        provider=provider,
        code_verifier=code_verifier,
        created_at=now,
        expires_at=expires_at,
    )


async def consume_attempt(
    session: AsyncSession,
    nonce: str,
    *,
    settings: Settings = config,
    now: Optional[datetime] = None,
) -> Optional[AuthorizationAttempt]:
    """
    Remove and return the attempt for ``nonce``.

    Returns None when no attempt exists (never created, already consumed)
    or when it has expired. An expired attempt is deleted all the same.
    """
    result = await session.execute(
        delete(AttemptRow)
        .where(AttemptRow.nonce == nonce)
        .returning(
            AttemptRow.nonce,
            AttemptRow.organization_id,
            AttemptRow.user_id,
            AttemptRow.provider,
            AttemptRow.code_verifier,
            AttemptRow.created_at,
            AttemptRow.expires_at,
        )
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        return None

    attempt = AuthorizationAttempt(
        nonce=row.nonce,
        organization_id=row.organization_id,
        user_id=row.user_id,
        provider=row.provider,
        code_verifier=get_cipher(settings).decrypt(row.code_verifier),
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
    if attempt.is_expired(now):
        logger.info("Authorization attempt for %s expired before callback", attempt.provider)
        return None
    return attempt
