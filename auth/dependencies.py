"""
FastAPI dependencies for authentication.

Provides ``db_session``, ``get_current_user_id`` (401 without a valid
Bearer token) and ``get_optional_user_id`` (None instead of 401, for the
status and disconnect entry points, which answer negatively rather than
erroring).
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth.jwt import InvalidSessionToken, verify_token
from database.session import get_db_session

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> Optional[str]:
    """Authenticated ``user_id`` or None."""
    if credentials is None:
        return None
    try:
        return verify_token(credentials.credentials)
    except InvalidSessionToken as exc:
        logger.debug("Rejected session token: %s", exc)
        return None


async def get_current_user_id(
    user_id: Optional[str] = Depends(get_optional_user_id),
) -> str:
    """
    Extract and verify the Bearer token, returning the authenticated
    ``user_id``.
    """
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing session token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
