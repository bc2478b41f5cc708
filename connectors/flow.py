"""
OAuth connect flow — authorization URL builder and callback handler.

One engine drives every provider; the connectors only describe endpoints
and wire-format quirks.  A callback walks strictly forward through

    received_callback → state_validated → code_exchanged
        → connection_persisted → redirected

and any ``ConnectorError`` on the way ends in ``failed`` with a sanitized
reason code in the error redirect.  Commit points: right after the
authorization attempt is consumed (single use is durable before the
provider is contacted) and right after the upsert.
"""

from __future__ import annotations

import hmac
import logging
from typing import NamedTuple, Optional
from urllib.parse import quote, urlencode

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from connectors.base import BaseConnector, mask_secret
from connectors.connection_store import upsert_connection
from connectors.errors import (
    ConnectorError,
    InvalidState,
    MissingAuthorizationCode,
    MissingOrganization,
    PersistenceFailed,
    ProviderDenied,
)
from connectors.flow_store import consume_attempt, save_attempt
from connectors.pkce import generate_pkce_pair
from connectors.registry import ConnectorRegistry
from connectors.schemas import (
    AuthorizationAttempt,
    CallbackOutcome,
    CallbackStage,
    ConnectionRecord,
)
from connectors.state import decode_state, encode_state, new_nonce
from connectors.status import invalidate_status

logger = logging.getLogger(__name__)

_DESCRIPTION_LIMIT = 200


class AuthorizationRequest(NamedTuple):
    auth_url: str
    state: str
    nonce: str


# ── Redirect targets ───────────────────────────────────────────────────


def success_redirect_path(provider: str, organization_id: str) -> str:
    query = urlencode({provider: "connected", "success": "1"})
    return f"/home/{quote(organization_id, safe='')}?{query}"


def error_redirect_path(reason: str, description: Optional[str] = None) -> str:
    params = {"error": reason}
    if description:
        params["description"] = description[:_DESCRIPTION_LIMIT]
    return f"/auth/error?{urlencode(params)}"


# ── Authorization URL ──────────────────────────────────────────────────


async def build_authorization_url(
    session: AsyncSession,
    *,
    user_id: str,
    organization_id: Optional[str],
    provider: str,
    settings: Settings = config,
) -> AuthorizationRequest:
    """
    Create and persist an authorization attempt, then return the provider
    URL the browser should be sent to.

    Raises ``MissingOrganization``, ``ProviderNotConfigured`` or
    ``MalformedState`` before anything is written.
    """
    if not organization_id:
        raise MissingOrganization(
            "an organization is required to connect an account",
            provider=provider,
            step="authorize",
        )
    connector = ConnectorRegistry().require(provider)
    connector.ensure_configured()

    nonce = new_nonce()
    state = encode_state(nonce, organization_id)
    pkce = generate_pkce_pair() if connector.requires_pkce else None

    await save_attempt(
        session,
        nonce=nonce,
        organization_id=organization_id,
        user_id=user_id,
        provider=connector.provider_name,
        code_verifier=pkce.code_verifier if pkce else None,
        settings=settings,
    )
    auth_url = connector.get_auth_url(state, code_challenge=pkce.code_challenge if pkce else None)
    await session.commit()

    logger.info(
        "Authorization started: provider=%s org=%s pkce=%s",
        connector.provider_name,
        organization_id,
        pkce is not None,
    )
    return AuthorizationRequest(auth_url=auth_url, state=state, nonce=nonce)


# ── Callback ───────────────────────────────────────────────────────────


async def _validate_state(
    session: AsyncSession,
    connector: BaseConnector,
    state: str,
    *,
    browser_nonce: Optional[str],
    require_browser_binding: bool,
    settings: Settings,
) -> AuthorizationAttempt:
    decoded = decode_state(state)

    provider = connector.provider_name
    try:
        attempt = await consume_attempt(session, decoded.nonce, settings=settings)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceFailed(
            "could not read the authorization attempt", provider=provider, step="validate_state"
        ) from exc

    if attempt is None:
        raise InvalidState("no pending authorization for this state", provider=provider, step="validate_state")
    if attempt.organization_id != decoded.organization_id:
        raise InvalidState("state organization does not match the attempt", provider=provider, step="validate_state")
    if attempt.provider != provider:
        raise InvalidState("state was issued for another provider", provider=provider, step="validate_state")
    if require_browser_binding and not (
        browser_nonce and hmac.compare_digest(browser_nonce, decoded.nonce)
    ):
        raise InvalidState("flow cookie missing or mismatched", provider=provider, step="validate_state")
    if connector.requires_pkce and attempt.code_verifier is None:
        raise InvalidState("attempt carries no PKCE verifier", provider=provider, step="validate_state")
    return attempt


async def handle_callback(
    session: AsyncSession,
    provider: str,
    *,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    browser_nonce: Optional[str] = None,
    require_browser_binding: bool = False,
    settings: Settings = config,
) -> CallbackOutcome:
    """
    Complete an authorization: validate state, exchange the code, store the
    connection.  Never raises ``ConnectorError``; failures come back as a
    ``CallbackOutcome`` in the ``failed`` stage with an error redirect.
    """
    stage = CallbackStage.RECEIVED_CALLBACK
    organization_id: Optional[str] = None
    logger.info(
        "%s callback: code=%s state=%s error=%s",
        provider,
        mask_secret(code),
        "present" if state else "missing",
        error,
    )

    try:
        if error:
            raise ProviderDenied(
                error,
                provider=provider,
                step=stage.value,
                description=error_description or error,
            )
        if not state:
            raise InvalidState("callback carried no state", provider=provider, step=stage.value)
        if not code:
            raise MissingAuthorizationCode(provider=provider, step=stage.value)

        connector = ConnectorRegistry().require(provider)

        attempt = await _validate_state(
            session,
            connector,
            state,
            browser_nonce=browser_nonce,
            require_browser_binding=require_browser_binding,
            settings=settings,
        )
        stage = CallbackStage.STATE_VALIDATED
        organization_id = attempt.organization_id

        verifier = attempt.code_verifier.get_secret_value() if attempt.code_verifier else None
        grant = await connector.exchange_code(code, verifier)
        stage = CallbackStage.CODE_EXCHANGED

        profile = await connector.fetch_profile(grant.access_token.get_secret_value())
        record = ConnectionRecord.from_grant(
            attempt.user_id, organization_id, connector.provider_name, grant, profile
        )
        try:
            await upsert_connection(session, record, settings=settings)
            await session.commit()
        except ConnectorError:
            await session.rollback()
            raise
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceFailed(
                "could not store connection", provider=provider, step="upsert"
            ) from exc
        stage = CallbackStage.CONNECTION_PERSISTED
        invalidate_status(attempt.user_id, organization_id, connector.provider_name)

    except ConnectorError as exc:
        if isinstance(exc, ProviderDenied):
            logger.warning("%s denied authorization: %s", provider, exc)
        else:
            logger.error(
                "%s callback failed at %s: %s (%s)",
                provider,
                stage.value,
                exc.reason,
                exc,
            )
        return CallbackOutcome(
            stage=CallbackStage.FAILED,
            redirect_path=error_redirect_path(exc.reason, exc.description),
            provider=provider,
            organization_id=organization_id,
            reason=exc.reason,
            description=exc.description,
        )

    logger.info("OAuth connected: provider=%s org=%s", provider, organization_id)
    return CallbackOutcome(
        stage=CallbackStage.REDIRECTED,
        redirect_path=success_redirect_path(provider, organization_id),
        provider=provider,
        organization_id=organization_id,
    )
