"""HMAC-SHA256 signing and verification for webhook bodies.

Receivers verify a delivery by recomputing
``sha256=hex(HMAC-SHA256(secret, raw_body))`` over the exact bytes received
and comparing it with the ``X-Webhook-Signature`` header.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def _to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def sign(secret: str | bytes, body: str | bytes) -> str:
    """Compute the HMAC-SHA256 signature for a webhook body.

    Args:
        secret: Shared secret for HMAC.
        body: Raw body to sign (str is encoded as UTF-8).

    Returns:
        Signature in format "sha256=<hex_digest>".
    """
    digest = hmac.new(
        key=_to_bytes(secret),
        msg=_to_bytes(body),
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify(body: str | bytes, signature: object, secret: str | bytes) -> bool:
    """Verify a webhook signature in constant time.

    Never raises: a missing prefix, wrong length, non-ASCII characters, a
    non-string signature and a missing secret all return False.

    Args:
        body: Raw body exactly as received.
        signature: Value of the X-Webhook-Signature header.
        secret: Shared secret for HMAC.

    Returns:
        True if the signature matches, False otherwise.
    """
    if not all(isinstance(value, str | bytes) for value in (body, signature, secret)):
        return False
    try:
        provided = _to_bytes(signature)
        expected = sign(secret, body).encode("ascii")
    except (TypeError, ValueError):
        return False
    if not provided.startswith(SIGNATURE_PREFIX.encode("ascii")):
        return False
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(expected, provided)


__all__ = [
    "SIGNATURE_PREFIX",
    "sign",
    "verify",
]
