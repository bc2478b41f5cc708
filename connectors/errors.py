"""
Exception types raised by the connection lifecycle.

Only lightweight, data-carrying exceptions live here so that the HTTP layer
can turn them into redirects or ``{success, error}`` bodies.  ``reason`` is
a stable, closed set of codes that is safe to show to a browser; nothing in
``to_payload()`` may ever contain a token, secret or PKCE verifier.
"""

from __future__ import annotations

from typing import Dict, Optional


class ConnectorError(Exception):
    """Base class — carries a sanitized reason code plus logging context."""

    reason: str = "unexpected_error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        provider: Optional[str] = None,
        step: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        super().__init__(message or self.reason.replace("_", " "))
        self.provider = provider
        self.step = step
        self.description = description

    def to_payload(self) -> Dict[str, str]:
        """Return a JSON-serialisable payload **without secrets**."""
        payload = {"error": self.reason}
        if self.description:
            payload["description"] = self.description
        return payload


# ── Configuration ──────────────────────────────────────────────────────


class MissingOrganization(ConnectorError):
    reason = "missing_organization"


class ProviderNotConfigured(ConnectorError):
    reason = "provider_not_configured"


# ── Protocol / security ────────────────────────────────────────────────


class MalformedState(ConnectorError):
    reason = "malformed_state"


class InvalidState(ConnectorError):
    reason = "invalid_state"


class MissingAuthorizationCode(ConnectorError):
    reason = "missing_code"


class ProviderDenied(ConnectorError):
    reason = "provider_denied"


# ── Upstream ───────────────────────────────────────────────────────────


class TokenExchangeFailed(ConnectorError):
    """The provider's token endpoint refused the grant or was unreachable."""

    reason = "token_exchange_failed"

    _BODY_LIMIT = 512

    def __init__(
        self,
        status_code: Optional[int],
        body: str = "",
        *,
        provider: Optional[str] = None,
        step: Optional[str] = "exchange_code",
    ) -> None:
        super().__init__(
            f"token endpoint returned {status_code if status_code is not None else 'no response'}",
            provider=provider,
            step=step,
        )
        self.status_code = status_code
        # server-side only, never surfaced
        self.body = (body or "")[: self._BODY_LIMIT]


# ── Persistence ────────────────────────────────────────────────────────


class ConnectionNotFound(ConnectorError):
    reason = "connection_not_found"


class PersistenceFailed(ConnectorError):
    reason = "persistence_failed"


class DeletionFailed(ConnectorError):
    reason = "deletion_failed"


# ── Access ─────────────────────────────────────────────────────────────


class NotAuthenticated(ConnectorError):
    reason = "not_authenticated"
