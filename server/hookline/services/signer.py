"""HMAC-SHA256 signing of outbound webhook bodies.

The signature is computed over the exact bytes placed on the wire, after
JSON serialization, so receivers can verify the raw request body without
re-encoding it.
"""
from __future__ import annotations

import hashlib
import hmac

from hookline.core.headers import SIGNATURE_HEADER
from hookline.models.webhook import Webhook

__all__ = ["SIGNATURE_HEADER", "sign", "sign_for_webhook", "verify"]


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign(secret: str, body: str | bytes) -> str:
    """Return the hex HMAC-SHA256 of ``body`` keyed with ``secret``."""
    return hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).hexdigest()


def verify(secret: str, body: str | bytes, signature: str) -> bool:
    """Constant-time check that ``signature`` matches ``body``."""
    if not signature:
        return False
    return hmac.compare_digest(sign(secret, body), signature.strip().lower())


def sign_for_webhook(webhook: Webhook, body: str | bytes) -> str:
    """Sign with the endpoint's current secret."""
    return sign(webhook.secret, body)
