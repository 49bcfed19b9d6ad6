from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Mapping

from payrelay.core.errors import NoSigningSecretError


HEADER_SIGNATURE = "X-PayRelay-Signature"
HEADER_TIMESTAMP = "X-PayRelay-Timestamp"
HEADER_NOTIFICATION_ID = "X-PayRelay-Notification-Id"
HEADER_EVENT_TYPE = "X-PayRelay-Event-Type"
HEADER_ATTEMPT = "X-PayRelay-Attempt"


def serialize_payload(payload: Mapping[str, Any]) -> bytes:
    """Return the canonical body bytes for a notification payload.

    Keys are sorted and separators are compact, so the same snapshot always
    produces the same bytes. These bytes are both signed and transmitted.
    """
    return json.dumps(dict(payload), sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign(secret: str | None, payload_bytes: bytes) -> str:
    """Hex HMAC-SHA256 of ``payload_bytes`` keyed by ``secret``."""
    if secret is None or not secret.strip():
        raise NoSigningSecretError("client has no webhook signing secret")
    return hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256).hexdigest()


def verify_signature(secret: str | None, payload_bytes: bytes, signature: str | None) -> bool:
    # Receiver-side check over the raw request body; never re-serialize before verifying.
    if not secret or not signature:
        return False
    expected = sign(secret, payload_bytes)
    return hmac.compare_digest(expected, signature.strip().lower())


def signed_headers(
    *,
    signature: str,
    timestamp: str,
    notification_id: str,
    event_type: str,
    attempt: int,
) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        HEADER_SIGNATURE: signature,
        HEADER_TIMESTAMP: timestamp,
        HEADER_NOTIFICATION_ID: notification_id,
        HEADER_EVENT_TYPE: event_type,
        HEADER_ATTEMPT: str(attempt),
    }
