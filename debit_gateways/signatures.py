"""
Webhook signature scheme: hex HMAC-SHA256 of the raw request body keyed
with the endpoint's webhook secret, sent in the ``Webhook-Signature`` header.
"""

import hashlib
import hmac

SIGNATURE_HEADER = "Webhook-Signature"


def compute_signature(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: str | None) -> bool:
    """Constant-time comparison of the expected and supplied signatures.

    Compared as bytes: a header carrying non-ASCII text is a mismatch,
    not an error.
    """
    if not signature:
        return False
    expected = compute_signature(secret, payload).encode("ascii")
    supplied = signature.strip().lower().encode("utf-8", errors="replace")
    return hmac.compare_digest(expected, supplied)
