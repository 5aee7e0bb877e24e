"""Webhook handler implementation for Paystack billing events."""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Optional

import structlog

from billsync.shared.core.exceptions import PersistenceError, UnresolvedTenantError

from . import paystack_shared as shared
from .charge_events import handle_charge_success
from .invoice_events import (
    handle_invoice_create,
    handle_invoice_payment_failed,
    handle_invoice_update,
)
from .paystack_client_impl import PaystackClient
from .plan_tiers import PlanTierResolver, load_plan_tier_resolver
from .reconciliation import ReconciliationContext, ReconciliationResult
from .subscription_events import (
    handle_expiring_cards,
    handle_subscription_create,
    handle_subscription_disable,
    handle_subscription_not_renew,
)
from .subscription_store import BillingStore
from .tenant_resolution import tenant_id_from_metadata
from .webhook_signature import require_valid_signature

EventHandler = Callable[[Any, ReconciliationContext], Awaitable[ReconciliationResult]]

EVENT_HANDLERS: dict[str, EventHandler] = {
    "subscription.create": handle_subscription_create,
    "subscription.disable": handle_subscription_disable,
    "subscription.not_renew": handle_subscription_not_renew,
    "subscription.expiring_cards": handle_expiring_cards,
    "invoice.create": handle_invoice_create,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "invoice.update": handle_invoice_update,
    "charge.success": handle_charge_success,
}

RECEIVED: dict[str, Any] = {"received": True}


def _event_context(data: Any) -> dict[str, Optional[str]]:
    if not isinstance(data, dict):
        return {"tenant_id": None, "subscription_code": None}
    tenant_id = tenant_id_from_metadata(data.get("metadata"))
    return {
        "tenant_id": str(tenant_id) if tenant_id else None,
        "subscription_code": shared.subscription_code_of(data),
    }


class WebhookHandler:
    """
    Paystack Webhook Handler.

    Once the signature is accepted every outcome is acknowledged with 200:
    a non-200 makes Paystack redeliver an event that would fail the same way.
    Only AuthError escapes handle().
    """

    def __init__(
        self,
        store: BillingStore,
        tiers: Optional[PlanTierResolver] = None,
        client: Optional[PaystackClient] = None,
        secret_key: Optional[str] = None,
    ):
        self.store = store
        self.tiers = tiers
        self.client = client
        self.secret_key = secret_key

    async def handle(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        """Verify and process webhook."""
        require_valid_signature(
            payload, signature, self.secret_key or shared.settings.PAYSTACK_SECRET_KEY
        )

        try:
            event = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            shared.logger.error("paystack_webhook_invalid_json", payload_len=len(payload))
            return {"error": "Invalid JSON payload"}
        if not isinstance(event, dict):
            shared.logger.error("paystack_webhook_invalid_json", payload_len=len(payload))
            return {"error": "Invalid JSON payload"}

        event_type = str(event.get("event") or "")
        data = event.get("data") or {}

        with structlog.contextvars.bound_contextvars(paystack_event=event_type):
            shared.logger.info("paystack_webhook_received")
            return await self._dispatch(event_type, data)

    async def _dispatch(self, event_type: str, data: Any) -> dict[str, Any]:
        handler = EVENT_HANDLERS.get(event_type)
        if handler is None:
            shared.logger.info("paystack_webhook_unhandled_event")
            return RECEIVED

        try:
            result = await handler(data, await self._context())
        except UnresolvedTenantError as exc:
            shared.logger.error(
                "paystack_webhook_tenant_unresolved",
                error=exc.message,
                **exc.details,
            )
            return RECEIVED
        except PersistenceError as exc:
            shared.logger.error(
                "paystack_webhook_persistence_failed",
                error=exc.message,
                operation=exc.details.get("operation"),
                **_event_context(data),
            )
            return RECEIVED
        except Exception as exc:
            shared.logger.exception(
                "paystack_webhook_processing_failed", error=str(exc), **_event_context(data)
            )
            return {"error": str(exc) or type(exc).__name__}

        shared.logger.info(
            "paystack_webhook_processed",
            action=result.action.value,
            tenant_id=str(result.tenant_id) if result.tenant_id else None,
            subscription_id=str(result.subscription_id) if result.subscription_id else None,
            detail=result.detail,
        )
        return RECEIVED

    async def _context(self) -> ReconciliationContext:
        if self.tiers is None:
            self.tiers = await load_plan_tier_resolver(self.store)
        return ReconciliationContext(store=self.store, tiers=self.tiers, client=self.client)
