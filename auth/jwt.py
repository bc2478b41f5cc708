"""
Signed session tokens identifying the authenticated member.

Tokens are base64-encoded JSON payloads signed with HMAC-SHA256.
Secret key is loaded from ``Settings.jwt_secret`` (env var: ``JWT_SECRET``).
Issuing tokens belongs to the identity service; this module only needs
``create_token`` for tooling and tests.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode
from binascii import Error as BinasciiError

from config.settings import Settings, config


class InvalidSessionToken(ValueError):
    pass


def _sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(user_id: str, *, settings: Settings = config) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    payload = {
        "user_id": user_id,
        "exp": int(time.time()) + settings.jwt_expiry_seconds,
    }
    raw = json.dumps(payload).encode()
    return b64encode(raw).decode() + "." + _sign(raw, settings.jwt_secret)


def verify_token(token: str, *, settings: Settings = config) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``InvalidSessionToken`` on malformed, forged or expired tokens.
    """
    parts = token.split(".", 1)
    if len(parts) != 2:
        raise InvalidSessionToken("bad format")
    try:
        raw = b64decode(parts[0], validate=True)
    except (BinasciiError, ValueError):
        raise InvalidSessionToken("bad encoding")
    if not hmac.compare_digest(parts[1], _sign(raw, settings.jwt_secret)):
        raise InvalidSessionToken("bad signature")
    try:
        payload = json.loads(raw)
    except ValueError:
        raise InvalidSessionToken("bad payload")
    if payload.get("exp", 0) < time.time():
        raise InvalidSessionToken("token expired")
    user_id = payload.get("user_id")
    if not user_id:
        raise InvalidSessionToken("no subject")
    return str(user_id)
