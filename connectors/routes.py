"""
Connector API routes — OAuth connect/callback, connection status, disconnect.

Route prefixes:
  /api/v1/connectors   JSON API used by the dashboard
  /auth                browser redirects coming back from the providers
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id, get_optional_user_id
from config.settings import Settings, config
from connectors.errors import (
    ConnectorError,
    MalformedState,
    MissingOrganization,
    ProviderNotConfigured,
)
from connectors.flow import build_authorization_url, handle_callback
from connectors.registry import ConnectorRegistry
from connectors.schemas import (
    AuthUrlResponse,
    ConnectionStatus,
    DisconnectResult,
    Provider,
)
from connectors.status import get_connection_status, list_connection_statuses
from connectors.token_manager import disconnect_provider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])
callback_router = APIRouter(tags=["oauth-callback"])

_KNOWN_PROVIDERS = {p.value for p in Provider}

_ERROR_STATUS = {
    MissingOrganization: status.HTTP_400_BAD_REQUEST,
    MalformedState: status.HTTP_400_BAD_REQUEST,
    ProviderNotConfigured: status.HTTP_404_NOT_FOUND,
}


def get_settings() -> Settings:
    return config


def flow_cookie_name(provider: str) -> str:
    return f"oauth_flow_{provider}" if provider in _KNOWN_PROVIDERS else "oauth_flow"


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers() -> List[dict]:
    """
    List all known connector providers and their configuration status.
    No auth required — used by the dashboard to show available platforms.
    """
    return ConnectorRegistry().list_providers()


@router.get("/status")
async def all_connection_statuses(
    organization_id: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(get_settings),
) -> Dict[str, ConnectionStatus]:
    """Connection status for every provider in one call."""
    return await list_connection_statuses(session, user_id, organization_id, settings=settings)


@router.get("/{provider}/auth-url", response_model=AuthUrlResponse)
async def get_auth_url(
    provider: str,
    response: Response,
    organization_id: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(get_settings),
) -> AuthUrlResponse:
    """
    Get the OAuth authorization URL for a provider and organization.

    Also sets a short-lived httpOnly cookie binding the attempt to this
    browser; the dashboard then navigates to ``auth_url``.
    """
    try:
        authorization = await build_authorization_url(
            session,
            user_id=user_id,
            organization_id=organization_id,
            provider=provider,
            settings=settings,
        )
    except ConnectorError as exc:
        raise HTTPException(
            status_code=_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
            detail=exc.to_payload(),
        )

    response.set_cookie(
        flow_cookie_name(provider),
        authorization.nonce,
        max_age=settings.oauth_flow_ttl_seconds,
        path="/",
        httponly=True,
        secure=not settings.is_local_development,
        samesite="lax",
    )
    return AuthUrlResponse(auth_url=authorization.auth_url, provider=provider)


@callback_router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """
    Provider redirects here after consent.  Always answers with a redirect:
    to the organization's home on success, to ``/auth/error`` otherwise.
    """
    cookie_name = flow_cookie_name(provider)
    outcome = await handle_callback(
        session,
        provider,
        code=code,
        state=state,
        error=error,
        error_description=error_description,
        browser_nonce=request.cookies.get(cookie_name),
        require_browser_binding=settings.oauth_flow_cookie_required,
        settings=settings,
    )
    redirect = RedirectResponse(
        url=f"{settings.site_url.rstrip('/')}{outcome.redirect_path}",
        status_code=status.HTTP_303_SEE_OTHER,
    )
    redirect.delete_cookie(
        cookie_name,
        path="/",
        httponly=True,
        secure=not settings.is_local_development,
        samesite="lax",
    )
    return redirect


@router.get("/{provider}/status", response_model=ConnectionStatus)
async def connection_status(
    provider: str,
    organization_id: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(get_settings),
) -> ConnectionStatus:
    """Non-secret connection status; unauthenticated callers just see ``isConnected: false``."""
    return await get_connection_status(
        session, user_id, organization_id, provider, settings=settings
    )


@router.delete("/{provider}/connection", response_model=DisconnectResult, response_model_exclude_none=True)
async def delete_connection(
    provider: str,
    organization_id: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(get_settings),
) -> DisconnectResult:
    """Revoke (best effort) and delete a connection.  Always HTTP 200."""
    return await disconnect_provider(
        session, user_id, organization_id, provider, settings=settings
    )
