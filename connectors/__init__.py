"""
connectors — OAuth connections between organizations and ad platforms.

Provides a generic connector framework that handles:
  • OAuth2 auth-URL generation with CSRF state and PKCE
  • Callback handling (state check → code exchange → upsert)
  • Per-organization token storage & auto-refresh
  • Fernet encryption of secrets at rest
  • Best-effort revocation / disconnect
  • Non-secret connection status

Each provider (Google, Meta, LinkedIn, TikTok) is a subclass of BaseConnector.
"""
