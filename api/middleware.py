"""
Global middleware.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

# Responses on these paths carry flow cookies, redirects with state, or
# per-user connection status; none of them may be cached by a proxy.
_NO_STORE_PREFIXES = ("/auth/", "/api/v1/connectors/")


def register_middleware(app: FastAPI) -> None:
    """Attach any app-level middleware."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        if request.url.path.startswith(_NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response
