"""charge.success handler: the usual first event of a new subscription."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from billsync.models.subscription import Subscription
from billsync.shared.core.exceptions import (
    ConfigurationError,
    PaystackAPIError,
    PaystackDuplicateSubscriptionError,
)
from billsync.shared.core.security import encrypt_string

from . import paystack_shared as shared
from .billing_periods import period_from_subscription
from .reconciliation import (
    ReconciliationAction,
    ReconciliationContext,
    ReconciliationResult,
)
from .subscription_events import mirror_subscription
from .tenant_resolution import resolve_tenant_id

SubscriptionStatus = shared.SubscriptionStatus


def _paid_at(data: dict[str, Any]) -> datetime:
    for key in ("paid_at", "paidAt", "transaction_date"):
        parsed = shared.parse_paystack_datetime(data.get(key))
        if parsed is not None:
            return parsed
    return datetime.now(timezone.utc)


def _reusable_authorization(data: dict[str, Any]) -> Optional[str]:
    authorization = data.get("authorization")
    if not isinstance(authorization, dict) or not authorization.get("reusable"):
        return None
    code = authorization.get("authorization_code")
    return str(code) if code else None


def _within_current_period(sub: Subscription, moment: datetime) -> bool:
    start, end = sub.current_period_start, sub.current_period_end
    return start is not None and end is not None and start <= moment <= end


def provider_subscription_values(
    provider: dict[str, Any], ctx: ReconciliationContext, plan_code: Optional[str]
) -> dict[str, Any]:
    """
    Values adoptable from a provider subscription record. The plan and tier
    are kept from the charge: POST /subscription answers with numeric plan ids.
    """
    period_start, period_end = period_from_subscription(
        provider, interval=ctx.tiers.interval_for(plan_code)
    )
    values = {
        "paystack_subscription_code": shared.subscription_code_of(provider),
        "paystack_email_token": provider.get("email_token"),
        "status": SubscriptionStatus.from_provider(provider.get("status")).value,
        "next_payment_date": shared.parse_paystack_datetime(provider.get("next_payment_date")),
        "current_period_start": period_start,
        "current_period_end": period_end,
    }
    return {k: v for k, v in values.items() if v is not None}


async def _ensure_provider_subscription(
    ctx: ReconciliationContext,
    sub: Subscription,
    customer_code: str,
    plan_code: str,
    authorization_code: str,
) -> Subscription:
    """
    Create the Paystack subscription now instead of waiting for
    subscription.create. A duplicate answer means it exists: look it up and adopt it.
    """
    if ctx.client is None:
        shared.logger.info(
            "paystack_client_unavailable_skipping_subscription_create",
            tenant_id=str(sub.tenant_id),
        )
        return sub

    try:
        provider = await ctx.client.create_subscription(
            customer_code, plan_code, authorization_code
        )
    except PaystackDuplicateSubscriptionError:
        shared.logger.info(
            "paystack_subscription_exists_looking_up",
            tenant_id=str(sub.tenant_id),
            customer_code=customer_code,
            plan_code=plan_code,
        )
        provider = await ctx.client.find_subscription(customer_code, plan_code)
    except PaystackAPIError as exc:
        shared.logger.warning(
            "paystack_subscription_create_failed",
            tenant_id=str(sub.tenant_id),
            plan_code=plan_code,
            error=exc.message,
        )
        return sub

    values = provider_subscription_values(provider or {}, ctx, plan_code)
    if not values.get("paystack_subscription_code"):
        shared.logger.info(
            "paystack_subscription_pending",
            tenant_id=str(sub.tenant_id),
            plan_code=plan_code,
        )
        return sub

    sub = await ctx.store.update_subscription(sub, values)
    await mirror_subscription(ctx, sub)
    await ctx.ledger.repair_periods(sub, sub.current_period_start, sub.current_period_end)
    shared.logger.info(
        "paystack_subscription_adopted",
        tenant_id=str(sub.tenant_id),
        subscription_code=sub.paystack_subscription_code,
    )
    return sub


async def handle_charge_success(
    data: dict[str, Any], ctx: ReconciliationContext
) -> ReconciliationResult:
    plan_code = shared.plan_code_of(data)
    if not plan_code:
        shared.logger.info("charge_success_without_plan", reference=data.get("reference"))
        return ReconciliationResult(ReconciliationAction.NOOP, detail="no plan")

    tenant_id = await resolve_tenant_id(data, ctx.store)
    tier = ctx.tiers.resolve(plan_code)
    reference = data.get("reference")
    paid_at = _paid_at(data)
    customer_code = shared.customer_code_of(data)
    authorization_code = _reusable_authorization(data)

    values: dict[str, Any] = {
        "paystack_plan_code": plan_code,
        "tier": tier.value,
        "status": SubscriptionStatus.ACTIVE.value,
    }
    amount = shared.coerce_amount(data.get("amount"))
    if amount is not None:
        values["amount"] = amount
    if customer_code:
        values["paystack_customer_code"] = customer_code
    if authorization_code:
        try:
            values["paystack_auth_code"] = encrypt_string(authorization_code)
        except ConfigurationError as exc:
            shared.logger.error(
                "paystack_authorization_not_stored",
                tenant_id=str(tenant_id),
                reference=reference,
                error=exc.message,
            )

    existing = await ctx.store.get_subscription_for_tenant(tenant_id)
    if existing is not None and not existing.status_enum.is_terminal:
        previous_plan = existing.paystack_plan_code
        sub = await ctx.store.update_subscription(existing, values)
        action = ReconciliationAction.UPDATED
    else:
        sub, created = await ctx.store.get_or_create_subscription(tenant_id, values)
        previous_plan = None if created else sub.paystack_plan_code
        if not created:
            sub = await ctx.store.update_subscription(sub, values)
        action = ReconciliationAction.CREATED if created else ReconciliationAction.UPDATED
        if created:
            shared.logger.info(
                "preliminary_subscription_created",
                tenant_id=str(tenant_id),
                subscription_id=str(sub.id),
                plan_code=plan_code,
            )

    await ctx.ledger.record_payment(sub, reference, amount, paid_at)
    if _within_current_period(sub, paid_at):
        # subscription.create already ran for this period.
        await ctx.ledger.repair_periods(sub, sub.current_period_start, sub.current_period_end)
    await mirror_subscription(ctx, sub)

    if authorization_code and customer_code and (
        sub.is_preliminary or previous_plan != plan_code
    ):
        sub = await _ensure_provider_subscription(
            ctx, sub, customer_code, plan_code, authorization_code
        )

    shared.logger.info(
        "charge_success_processed",
        tenant_id=str(tenant_id),
        subscription_id=str(sub.id),
        reference=reference,
        tier=tier.value,
    )
    return ReconciliationResult(
        action, tenant_id=tenant_id, subscription_id=sub.id, detail=reference
    )
