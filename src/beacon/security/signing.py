"""Webhook payload signing.

Outbound webhook bodies are signed with HMAC-SHA256 over the exact JSON
bytes sent. The hex digest travels in ``X-Webhook-Signature``; receivers
recompute it with their copy of the secret.

Example:
    body = orjson.dumps(payload)
    headers[SIGNATURE_HEADER] = sign_payload(body, secret)

    # Receiver side
    if not verify_signature(body, secret, request.headers[SIGNATURE_HEADER]):
        raise HTTPException(401, "Invalid signature")
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature"


def sign_payload(body: bytes, secret: str | bytes) -> str:
    """Return the hex HMAC-SHA256 of ``body``."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return hmac.new(secret, body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, secret: str | bytes, signature: str) -> bool:
    """Constant-time check of a received signature."""
    return hmac.compare_digest(sign_payload(body, secret), signature)
