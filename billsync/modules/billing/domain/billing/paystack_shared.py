"""Shared runtime state and payload primitives for Paystack billing modules."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from billsync.models.subscription import SubscriptionStatus, TERMINAL_STATUSES
from billsync.shared.core.config import get_settings

logger = structlog.get_logger()


class _SettingsProxy:
    """Lazy settings accessor to avoid stale module-level configuration."""

    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)


settings: Any = _SettingsProxy()

# Metadata keys carrying the tenant id; "organizationId" is the legacy checkout key.
TENANT_METADATA_KEYS = ("tenant_id", "organizationId")

__all__ = [
    "logger",
    "settings",
    "SubscriptionStatus",
    "TERMINAL_STATUSES",
    "email_hash",
    "coerce_metadata",
    "parse_paystack_datetime",
    "subscription_code_of",
    "plan_code_of",
    "plan_interval_of",
    "customer_code_of",
    "coerce_amount",
]


def email_hash(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return hashlib.sha256(email.strip().lower().encode()).hexdigest()[:12]


def coerce_metadata(value: Any) -> dict[str, Any]:
    """Paystack may deliver metadata as a JSON-encoded string."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except (json.JSONDecodeError, TypeError, ValueError):
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def parse_paystack_datetime(value: Any) -> Optional[datetime]:
    """Parse Paystack ISO-8601 timestamps ("2024-01-01T00:00:00.000Z") to aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning("paystack_datetime_unparseable", value=str(value)[:40])
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def subscription_code_of(data: dict[str, Any]) -> Optional[str]:
    code = data.get("subscription_code") or _as_dict(data.get("subscription")).get(
        "subscription_code"
    )
    return str(code) if code else None


def plan_code_of(data: dict[str, Any]) -> Optional[str]:
    plan = data.get("plan")
    if isinstance(plan, str) and plan.strip():
        return plan.strip()
    code = _as_dict(plan).get("plan_code") or data.get("plan_code")
    return str(code) if code else None


def plan_interval_of(data: dict[str, Any]) -> Optional[str]:
    interval = _as_dict(data.get("plan")).get("interval")
    return str(interval) if interval else None


def customer_code_of(data: dict[str, Any]) -> Optional[str]:
    code = _as_dict(data.get("customer")).get("customer_code") or data.get(
        "customer_code"
    )
    return str(code) if code else None


def coerce_amount(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("paystack_amount_invalid", amount=str(value)[:32])
        return None
