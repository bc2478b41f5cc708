"""
ConnectorRegistry — discovers and provides access to all connectors.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

from config.settings import Settings, config
from connectors.base import BaseConnector
from connectors.errors import ProviderNotConfigured
from connectors.facebook import FacebookConnector
from connectors.google import GoogleConnector
from connectors.linkedin import LinkedInConnector
from connectors.tiktok import TikTokConnector

logger = logging.getLogger(__name__)

# ── All known connectors — add new ones here ─────────────────────────────

_CONNECTOR_CLASSES: List[Type[BaseConnector]] = [
    GoogleConnector,
    FacebookConnector,
    LinkedInConnector,
    TikTokConnector,
]


class ConnectorRegistry:
    """Singleton registry for all OAuth connectors."""

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._all = {}
            cls._instance._connectors = {}
            cls._instance._discovered = False
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (tests, settings reload)."""
        cls._instance = None

    def discover(self, settings: Settings = config) -> None:
        """
        Instantiate every connector against ``settings`` and register the
        configured ones.  Providers listed in ``oauth_required_providers``
        must be configured, otherwise startup fails.
        """
        if self._discovered:
            return
        for connector_cls in _CONNECTOR_CLASSES:
            conn = connector_cls(settings)
            self._all[conn.provider_name] = conn
            if conn.is_configured():
                self._connectors[conn.provider_name] = conn
                logger.info(
                    "Connector registered: %s (%s)",
                    conn.display_name,
                    conn.provider_name,
                )
            else:
                logger.warning(
                    "Connector %s skipped — not configured (missing client id/secret)",
                    conn.provider_name,
                )
        missing = [p for p in settings.oauth_required_providers if p not in self._connectors]
        if missing:
            raise ProviderNotConfigured(
                f"required providers not configured: {', '.join(missing)}",
                step="startup",
            )
        self._discovered = True

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Get a configured connector by provider name."""
        if not self._discovered:
            self.discover()
        return self._connectors.get(provider)

    def require(self, provider: str) -> BaseConnector:
        """Like ``get`` but raises ``ProviderNotConfigured``."""
        conn = self.get(provider)
        if conn is None:
            raise ProviderNotConfigured(
                f"provider '{provider}' is unknown or not configured",
                provider=provider,
                step="configuration",
            )
        return conn

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all known connectors."""
        if not self._discovered:
            self.discover()
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "icon": c.icon,
                "configured": c.is_configured(),
                "requires_pkce": c.requires_pkce,
            }
            for c in self._all.values()
        ]

    def list_configured(self) -> List[str]:
        """Return names of configured connectors."""
        if not self._discovered:
            self.discover()
        return list(self._connectors.keys())
