# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Bearer token claim extraction.

Partition keys usually identify the caller, so the gateway can derive
them from the JWT in the Authorization header. Claims are read WITHOUT
signature verification: the token is only used to pick which quota to
track, never to authorize anything.

None of the extract helpers raise. A missing, malformed or undecodable
token yields None (or an empty dict).
"""

import logging
import time
from typing import Any

import jwt

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def _strip_bearer(token: str) -> str:
    token = token.strip()
    if token[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX:
        return token[len(BEARER_PREFIX) :].strip()
    return token


def _decode_unverified(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    try:
        claims = jwt.decode(
            _strip_bearer(token),
            options={"verify_signature": False},
        )
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        logger.debug(f"Could not decode bearer token: {e}")
        return None
    if not isinstance(claims, dict):
        return None
    return claims


def extract_claim(token: str | None, claim: str) -> str | None:
    """
    Return a claim of a JWT as a string, without verifying the signature.

    Args:
        token: Raw JWT, optionally prefixed with ``Bearer ``
        claim: Claim name, e.g. "oid", "sub" or "email"

    Returns:
        The claim value (non-string values are stringified), or None.

    Example:
        >>> token = create_sample_token("user-42")
        >>> extract_claim(f"Bearer {token}", "oid")
        'user-42'
    """
    claims = _decode_unverified(token)
    if claims is None:
        return None
    value = claims.get(claim)
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def extract_oid(token: str | None) -> str | None:
    """Object ID (``oid``) claim, as issued by Microsoft identity platform."""
    return extract_claim(token, "oid")


def extract_sub(token: str | None) -> str | None:
    """Subject (``sub``) claim."""
    return extract_claim(token, "sub")


def extract_all_claims(token: str | None) -> dict[str, str]:
    """All claims of a JWT as strings; empty if the token is unusable."""
    claims = _decode_unverified(token)
    if claims is None:
        return {}
    return {
        name: value if isinstance(value, str) else str(value)
        for name, value in claims.items()
    }


def create_sample_token(
    oid: str,
    name: str | None = None,
    email: str | None = None,
    lifetime_seconds: int = 3600,
) -> str:
    """
    Create an unsigned (``alg=none``) JWT for tests and demos.

    The payload carries ``oid`` and ``sub`` (both set to ``oid``), ``iat``
    and ``exp``, plus ``name`` and ``email`` when given.
    """
    now = int(time.time())
    payload: dict[str, Any] = {
        "oid": oid,
        "sub": oid,
        "iat": now,
        "exp": now + lifetime_seconds,
    }
    if name:
        payload["name"] = name
    if email:
        payload["email"] = email
    return jwt.encode(payload, None, algorithm="none")


__all__ = [
    "create_sample_token",
    "extract_all_claims",
    "extract_claim",
    "extract_oid",
    "extract_sub",
]
