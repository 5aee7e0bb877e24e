"""Paystack webhook signature verification (HMAC-SHA512 over the raw body)."""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional

from billsync.shared.core.exceptions import AuthError

from . import paystack_shared as shared


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha512).hexdigest()


def verify_signature(
    payload: bytes, signature: Optional[str], secret: Optional[str]
) -> bool:
    """Fail-closed check: missing signature, missing secret or mismatch are all False."""
    if not signature:
        shared.logger.warning("paystack_webhook_missing_signature")
        return False

    if not secret:
        shared.logger.error("paystack_secret_key_not_configured")
        return False

    expected = compute_signature(payload, secret)
    is_valid = hmac.compare_digest(expected, signature.strip().lower())
    if not is_valid:
        shared.logger.warning(
            "paystack_webhook_invalid_signature", provided_sig=signature[:8] + "..."
        )

    return is_valid


def require_valid_signature(
    payload: bytes, signature: Optional[str], secret: Optional[str]
) -> None:
    if not verify_signature(payload, signature, secret):
        if not signature:
            raise AuthError("Missing signature")
        raise AuthError("Invalid signature")
