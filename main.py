"""
Ad platform connection service — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from config.settings import config
from connectors.encryption import get_cipher
from connectors.registry import ConnectorRegistry
from connectors.routes import callback_router, router as connectors_router
from database.session import init_models

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ad Platform Connections",
        version="1.0.0",
        description="Per-organization OAuth connections to Google, Meta, LinkedIn and TikTok.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(connectors_router, prefix="/api/v1/connectors")
    app.include_router(callback_router, prefix="/auth")

    @app.on_event("startup")
    async def on_startup():
        logger.info("Discovering connectors…")
        # raises ProviderNotConfigured for missing required providers
        ConnectorRegistry().discover(config)
        get_cipher(config)

        await init_models()
        logger.info("Application ready to accept requests.")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
