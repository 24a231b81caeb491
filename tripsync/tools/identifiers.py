"""Identifier and share-token generators."""

from __future__ import annotations

import secrets
import string
import time
import uuid

_BASE36 = string.digits + string.ascii_lowercase
_RANDOM_BITS = 21
SHARE_TOKEN_FRAGMENT = 13


def new_trip_id() -> int:
    """Integer trip id: millisecond clock in the high bits, 21 random bits below.

    Ids still sort roughly by creation time, but two sessions creating a trip
    in the same millisecond collide only with probability 2**-21.
    """
    millis = time.time_ns() // 1_000_000
    return (millis << _RANDOM_BITS) | secrets.randbits(_RANDOM_BITS)


def new_entity_id() -> str:
    """Id for users and trip sub-entities."""
    return uuid.uuid4().hex


def new_share_token() -> str:
    """Opaque alphanumeric token: two 13-character base-36 fragments."""
    return "".join(secrets.choice(_BASE36) for _ in range(2 * SHARE_TOKEN_FRAGMENT))


def share_url(base_url: str, token: str) -> str:
    """``<origin>/share/<token>``"""
    return f"{base_url.rstrip('/')}/share/{token}"
