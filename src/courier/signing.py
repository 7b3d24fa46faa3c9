"""HMAC-SHA256 request signing.

The signature is computed over the exact bytes sent as the request body,
so receivers must verify against the raw body before parsing it:

    ```python
    from courier.signing import verify

    if not verify(secret, request_body_bytes, headers["X-Webhook-Signature"]):
        return 401
    ```
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_TYPE_HEADER = "X-Webhook-Event"
EVENT_ID_HEADER = "X-Webhook-Event-Id"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"
ATTEMPT_HEADER = "X-Webhook-Attempt"


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign(secret: str | bytes, payload: str | bytes) -> str:
    """Compute the hex-encoded HMAC-SHA256 of a payload.

    Args:
        secret: Subscription signing secret.
        payload: Serialized request body. ``str`` is UTF-8 encoded.

    Returns:
        Lowercase hex digest (64 characters).
    """
    return hmac.new(_as_bytes(secret), _as_bytes(payload), hashlib.sha256).hexdigest()


def verify(secret: str | bytes, payload: str | bytes, signature: str) -> bool:
    """Verify a signature in constant time.

    Args:
        secret: Subscription signing secret.
        payload: Raw request body as received.
        signature: Value of the signature header.

    Returns:
        True if the signature matches the payload, False otherwise.
    """
    expected = sign(secret, payload)
    return hmac.compare_digest(expected.encode("ascii"), _as_bytes(signature.strip().lower()))
