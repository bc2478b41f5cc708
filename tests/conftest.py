"""
Shared fixtures: test settings, an in-memory database, and a stub for the
providers' HTTP endpoints.
"""

from typing import Callable, Dict, List, Tuple, Union
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.settings import Settings
from connectors.base import BaseConnector
from connectors.registry import ConnectorRegistry
from connectors.status import clear_status_cache
from database.models import Base

Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


def make_settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        environment="test",
        database_url="sqlite+aiosqlite:///:memory:",
        site_url="https://app.example.com",
        oauth_redirect_base="https://api.example.com",
        google_client_id="google-client",
        google_client_secret="google-secret",
        facebook_app_id="fb-app",
        facebook_app_secret="fb-secret",
        facebook_config_id="cfg-123",
        linkedin_client_id="li-client",
        linkedin_client_secret="li-secret",
        tiktok_client_key="tt-key",
        tiktok_client_secret="tt-secret",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture(autouse=True)
def registry(settings):
    ConnectorRegistry.reset()
    reg = ConnectorRegistry()
    reg.discover(settings)
    clear_status_cache()
    yield reg
    ConnectorRegistry.reset()
    clear_status_cache()


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


class ProviderStub:
    """Answers provider HTTP calls from canned responders and records requests."""

    def __init__(self) -> None:
        self._routes: List[Tuple[str, str, Responder]] = []
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url_prefix: str, responder: Responder) -> None:
        self._routes.append((method.upper(), url_prefix, responder))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, prefix, responder in self._routes:
            if request.method == method and str(request.url).startswith(prefix):
                if callable(responder):
                    return responder(request)
                return responder
        return httpx.Response(404, json={"error": "no stub"})

    def requests_to(self, url_prefix: str) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url).startswith(url_prefix)]


def json_response(status_code: int, payload: Dict) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, json=payload)


def timeout_response(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


@pytest.fixture
def provider_stub():
    stub = ProviderStub()

    def _client(self):
        return httpx.AsyncClient(
            transport=httpx.MockTransport(stub.handler),
            timeout=self.settings.oauth_http_timeout_seconds,
        )

    with patch.object(BaseConnector, "_http_client", _client):
        yield stub
