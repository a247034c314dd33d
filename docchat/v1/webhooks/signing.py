"""
Webhook body construction and HMAC signing.

Receivers verify X-Webhook-Signature against the raw request body, so the
bytes that are signed must be exactly the bytes that are sent.
"""

import hashlib
import hmac
import json
from datetime import datetime
from typing import Any

from docchat.infra.database import as_utc

SIGNATURE_HEADER = "X-Webhook-Signature"


def build_webhook_body(
    event_id: Any, event_type: str, payload: dict[str, Any], created_at: datetime
) -> bytes:
    """Serialize an event as `{id, type, payload, created_at}` in that key order."""
    return json.dumps(
        {
            "id": str(event_id),
            "type": event_type,
            "payload": payload,
            "created_at": as_utc(created_at).isoformat(),
        },
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")


def sign_webhook_body(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the body, keyed by the subscription secret."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, secret: str, signature: str) -> bool:
    """Constant-time check of a received signature, for receivers and tests."""
    return hmac.compare_digest(sign_webhook_body(body, secret), signature)
