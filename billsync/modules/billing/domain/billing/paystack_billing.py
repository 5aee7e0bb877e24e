"""
Tenant-initiated Paystack billing operations.

Local subscription state is only ever written by the webhook engine, with one
exception: schedule_plan_switch marks the current row non-renewing so the
upcoming subscription.create for the new plan overwrites it in place.
"""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from billsync.models.subscription import Subscription
from billsync.shared.core.exceptions import (
    BillingError,
    PaystackDuplicateSubscriptionError,
    ResourceNotFoundError,
)
from billsync.shared.core.security import decrypt_string

from . import paystack_shared as shared
from .paystack_client_impl import PaystackClient
from .subscription_store import BillingStore

SubscriptionStatus = shared.SubscriptionStatus


class BillingService:
    def __init__(self, store: BillingStore, client: Optional[PaystackClient] = None):
        self.store = store
        self._client = client

    @property
    def client(self) -> PaystackClient:
        if self._client is None:
            self._client = PaystackClient()
        return self._client

    async def _live_subscription(self, tenant_id: UUID) -> Subscription:
        sub = await self.store.get_subscription_for_tenant(tenant_id)
        if sub is None or sub.status_enum.is_terminal:
            raise ResourceNotFoundError(
                "No active subscription", details={"tenant_id": str(tenant_id)}
            )
        return sub

    async def initialize_checkout(
        self,
        tenant_id: UUID,
        email: str,
        plan_code: str,
        amount_subunits: int,
        callback_url: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Start a Paystack checkout for a plan.
        tenant_id travels in metadata so every later event resolves the tenant.
        """
        if amount_subunits <= 0:
            raise BillingError("Amount must be positive", details={"amount": amount_subunits})

        response = await self.client.initialize_transaction(
            email=email,
            amount_subunits=amount_subunits,
            plan_code=plan_code,
            callback_url=callback_url,
            metadata={"tenant_id": str(tenant_id), "plan_code": plan_code},
            currency=shared.settings.PAYSTACK_CHECKOUT_CURRENCY,
        )
        data = response.get("data") or {}
        shared.logger.info(
            "paystack_checkout_initialized",
            tenant_id=str(tenant_id),
            plan_code=plan_code,
            email_hash=shared.email_hash(email),
            reference=data.get("reference"),
        )
        return {
            "authorization_url": data.get("authorization_url"),
            "access_code": data.get("access_code"),
            "reference": data.get("reference"),
        }

    async def schedule_plan_switch(self, tenant_id: UUID, new_plan_code: str) -> dict[str, Any]:
        """Deferred switch: the new plan starts on the current subscription's next payment date."""
        sub = await self._live_subscription(tenant_id)
        if sub.paystack_plan_code == new_plan_code:
            raise BillingError("Already on this plan", details={"plan_code": new_plan_code})
        if not (sub.paystack_subscription_code and sub.paystack_email_token):
            raise BillingError("Subscription is not confirmed by Paystack yet")
        if not sub.paystack_customer_code or not sub.next_payment_date:
            raise BillingError("Subscription has no customer or next payment date")

        authorization_code = (
            decrypt_string(sub.paystack_auth_code) if sub.paystack_auth_code else None
        )
        if not authorization_code:
            raise BillingError("No reusable card authorization on file")

        try:
            created = await self.client.create_subscription(
                sub.paystack_customer_code,
                new_plan_code,
                authorization_code,
                start_date=sub.next_payment_date.isoformat(),
            )
        except PaystackDuplicateSubscriptionError:
            shared.logger.info(
                "plan_switch_already_scheduled",
                tenant_id=str(tenant_id),
                plan_code=new_plan_code,
            )
            created = {}

        await self.client.disable_subscription(
            sub.paystack_subscription_code, sub.paystack_email_token
        )
        await self.store.update_subscription(
            sub, {"status": SubscriptionStatus.NON_RENEWING.value}
        )

        shared.logger.info(
            "plan_switch_scheduled",
            tenant_id=str(tenant_id),
            from_plan=sub.paystack_plan_code,
            to_plan=new_plan_code,
            effective_at=sub.next_payment_date.isoformat(),
        )
        return {
            "subscription_code": created.get("subscription_code"),
            "plan_code": new_plan_code,
            "effective_at": sub.next_payment_date.isoformat(),
        }

    async def cancel_subscription(self, tenant_id: UUID) -> bool:
        """Disable renewal at Paystack; subscription.not_renew/disable update local state."""
        sub = await self._live_subscription(tenant_id)
        if not (sub.paystack_subscription_code and sub.paystack_email_token):
            raise BillingError("Subscription is not confirmed by Paystack yet")

        await self.client.disable_subscription(
            sub.paystack_subscription_code, sub.paystack_email_token
        )
        shared.logger.info(
            "subscription_cancel_requested",
            tenant_id=str(tenant_id),
            subscription_code=sub.paystack_subscription_code,
        )
        return True

    async def get_management_link(self, tenant_id: UUID) -> Optional[str]:
        sub = await self._live_subscription(tenant_id)
        if not sub.paystack_subscription_code:
            raise BillingError("Subscription is not confirmed by Paystack yet")
        return await self.client.get_manage_link(sub.paystack_subscription_code)
