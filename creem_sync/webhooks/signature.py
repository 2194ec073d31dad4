"""Creem webhook signature verification.

Creem signs every delivery with HMAC-SHA256 over the raw request body, keyed
by the endpoint's webhook secret, and sends the lowercase hex digest in the
``creem-signature`` header.
"""

import hashlib
import hmac

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "creem-signature"
SECRET_PREFIX = "whsec_"
SIGNATURE_PREFIXES = ("sha256=", "sha256:")


def normalize_secret(secret: str) -> str:
    """Strip the ``whsec_`` prefix the Creem dashboard shows on secrets."""
    if secret.startswith(SECRET_PREFIX):
        return secret[len(SECRET_PREFIX):]
    return secret


def normalize_signature(signature: str) -> str:
    """Strip an algorithm prefix such as ``sha256=`` from a received signature."""
    sig = signature.strip()
    for prefix in SIGNATURE_PREFIXES:
        if sig.startswith(prefix):
            return sig[len(prefix):]
    return sig


def sign_payload(raw_body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 digest Creem would send for ``raw_body``."""
    key = normalize_secret(secret).encode("utf-8")
    return hmac.new(key, raw_body, hashlib.sha256).hexdigest()


def constant_time_equals(expected: bytes, received: bytes) -> bool:
    """Compare two byte strings without exiting early on the first mismatch.

    Only a length mismatch returns early; digest length is public.
    """
    if len(expected) != len(received):
        return False

    result = 0
    for x, y in zip(expected, received):
        result |= x ^ y
    return result == 0


def verify_signature(raw_body: bytes, signature_header: str, secret: str) -> bool:
    """Return True if ``signature_header`` is a valid Creem signature for ``raw_body``.

    Never raises; any failure (missing inputs, non-ASCII signature) is False.
    """
    if not signature_header or not secret:
        return False

    try:
        expected = sign_payload(raw_body, secret).encode("ascii")
        received = normalize_signature(signature_header).encode("ascii")
        return constant_time_equals(expected, received)
    except Exception as e:
        logger.warning("creem_signature_check_error", error=str(e), error_type=type(e).__name__)
        return False
