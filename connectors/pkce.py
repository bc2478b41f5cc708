"""PKCE (Proof Key for Code Exchange, RFC 7636) helpers.

Only the S256 method is produced.  Verifiers are never logged and never
travel in the ``state`` parameter; they are held server-side with the
authorization attempt.
"""

from __future__ import annotations

import base64
import secrets
from hashlib import sha256
from typing import NamedTuple

# 48 random bytes -> 64 base64url characters (RFC 7636 allows 43-128).
_VERIFIER_BYTES = 48


class PkcePair(NamedTuple):
    code_verifier: str
    code_challenge: str


def generate_code_verifier(num_bytes: int = _VERIFIER_BYTES) -> str:
    """Return a URL-safe random verifier of 43-128 characters."""
    if not 32 <= num_bytes <= 96:
        raise ValueError("verifier entropy must be 32-96 bytes (43-128 characters)")
    return secrets.token_urlsafe(num_bytes)


def code_challenge_s256(verifier: str) -> str:
    """Base64url(SHA-256(verifier)) without ``=`` padding."""
    digest = sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_pair() -> PkcePair:
    verifier = generate_code_verifier()
    return PkcePair(code_verifier=verifier, code_challenge=code_challenge_s256(verifier))
