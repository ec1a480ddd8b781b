"""HMAC-SHA256 webhook signature verification"""

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)


def compute_signature(raw_payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw payload bytes"""
    return hmac.new(secret.encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()


def validate_signature(raw_payload: bytes, signature: str | None, secret: str | None) -> bool:
    """
    Check a webhook signature against the configured secret.

    Fails closed: a missing secret or signature, a length mismatch or any
    error while computing the digest returns False instead of raising.
    The comparison is constant-time.
    """
    if not secret or not signature:
        return False

    try:
        expected = compute_signature(raw_payload, secret)
        supplied = signature.strip().lower()
        if len(supplied) != len(expected):
            return False
        return hmac.compare_digest(supplied.encode("ascii"), expected.encode("ascii"))
    except Exception as e:
        logger.warning("Signature check failed: %s", e)
        return False
