"""
Secret encryption — encrypt / decrypt OAuth tokens and PKCE verifiers at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key is loaded from ``Settings.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).

If no key is configured, encryption is **disabled** and secrets are stored
as plaintext (with a startup warning).  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import Settings, config

logger = logging.getLogger(__name__)


class TokenCipher:
    """Fernet wrapper that degrades to a pass-through when no key is set."""

    def __init__(self, key: str = "") -> None:
        self._fernet: Optional[Fernet] = None
        if not key:
            logger.warning(
                "TOKEN_ENCRYPTION_KEY not set — OAuth tokens will be stored as plaintext"
            )
            return
        # A malformed key is a deployment error: fail at startup, not on first write.
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        logger.info("Token encryption enabled (Fernet/AES-128-CBC)")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None:
            return None
        if self._fernet is None:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """
        Decrypt a value read from the database.

        Values written before encryption was switched on are not valid
        Fernet tokens; they are returned unchanged.
        """
        if ciphertext is None:
            return None
        if self._fernet is None:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.warning("Stored secret is not Fernet-encrypted; reading it as plaintext")
            return ciphertext


_ciphers: Dict[str, TokenCipher] = {}


def get_cipher(settings: Optional[Settings] = None) -> TokenCipher:
    """Cipher for ``settings`` (default: the process ``config``), built once per key."""
    key = (settings or config).token_encryption_key
    if key not in _ciphers:
        _ciphers[key] = TokenCipher(key)
    return _ciphers[key]
