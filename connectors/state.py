"""
OAuth ``state`` codec (CSRF protection).

The state sent to the provider is ``<nonce>__<organization_id>``.  The
nonce is a UUID4 and therefore never contains the delimiter; organization
ids are checked on the way in, so a state produced here always splits back
into exactly two parts.  A decoded state is still untrusted: the nonce must
be matched against a stored authorization attempt before anything else.
"""

from __future__ import annotations

import uuid
from typing import NamedTuple

from connectors.errors import MalformedState

STATE_DELIMITER = "__"


class DecodedState(NamedTuple):
    nonce: str
    organization_id: str


def new_nonce() -> str:
    """Cryptographically random nonce (UUID4 uses ``os.urandom``)."""
    return str(uuid.uuid4())


def encode_state(nonce: str, organization_id: str) -> str:
    """Bind ``nonce`` to ``organization_id``."""
    for label, part in (("nonce", nonce), ("organization id", organization_id)):
        if not part:
            raise MalformedState(f"empty {label}", step="encode_state")
        if STATE_DELIMITER in part:
            raise MalformedState(
                f"{label} contains the state delimiter",
                step="encode_state",
            )
    return f"{nonce}{STATE_DELIMITER}{organization_id}"


def decode_state(state: str) -> DecodedState:
    """
    Split a state string returned by a provider.

    Raises ``MalformedState`` unless the delimiter yields exactly two
    non-empty parts.
    """
    parts = (state or "").split(STATE_DELIMITER)
    if len(parts) != 2 or not all(parts):
        raise MalformedState("state does not have the form <nonce>__<organization>", step="decode_state")
    return DecodedState(nonce=parts[0], organization_id=parts[1])
