"""invoice.* event handlers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from billsync.models.subscription import Subscription

from . import paystack_shared as shared
from .reconciliation import (
    ReconciliationAction,
    ReconciliationContext,
    ReconciliationResult,
)
from .tenant_resolution import resolve_tenant_id

SubscriptionStatus = shared.SubscriptionStatus


async def _owning_subscription(
    data: dict[str, Any], tenant_id: UUID, ctx: ReconciliationContext
) -> Optional[Subscription]:
    """Row holding the invoice's subscription code; the tenant's row only for uncoded invoices."""
    subscription_code = shared.subscription_code_of(data)
    if subscription_code:
        return await ctx.store.get_subscription_by_code(subscription_code)
    return await ctx.store.get_subscription_for_tenant(tenant_id)


def _invoice_period(
    data: dict[str, Any], sub: Subscription
) -> tuple[datetime, datetime]:
    start = shared.parse_paystack_datetime(data.get("period_start"))
    end = shared.parse_paystack_datetime(data.get("period_end"))
    if start is not None and end is not None and start <= end:
        return start, end
    if sub.current_period_start is not None and sub.current_period_end is not None:
        return sub.current_period_start, sub.current_period_end
    # Placeholder; corrected by the next subscription.create for this row.
    moment = shared.parse_paystack_datetime(data.get("created_at") or data.get("createdAt"))
    moment = moment or sub.created_at
    return moment, moment


def _invoice_code(data: dict[str, Any]) -> Optional[str]:
    code = data.get("invoice_code")
    return str(code) if code else None


def _provider_subscription_status(data: dict[str, Any]) -> str:
    nested = data.get("subscription")
    if isinstance(nested, dict) and nested.get("status"):
        return str(nested["status"]).lower()
    return ""


async def _append_invoice(
    data: dict[str, Any],
    sub: Subscription,
    paid: bool,
    ctx: ReconciliationContext,
) -> None:
    period_start, period_end = _invoice_period(data, sub)
    await ctx.ledger.record_invoice(
        sub,
        _invoice_code(data),
        shared.coerce_amount(data.get("amount")),
        period_start,
        period_end,
        paid=paid,
        paid_at=shared.parse_paystack_datetime(data.get("paid_at")) if paid else None,
    )


async def handle_invoice_create(
    data: dict[str, Any], ctx: ReconciliationContext
) -> ReconciliationResult:
    tenant_id = await resolve_tenant_id(data, ctx.store)
    sub = await _owning_subscription(data, tenant_id, ctx)
    if sub is None:
        shared.logger.warning(
            "invoice_create_no_subscription",
            tenant_id=str(tenant_id),
            invoice_code=_invoice_code(data),
        )
        return ReconciliationResult(ReconciliationAction.NOOP, tenant_id=tenant_id)

    await _append_invoice(data, sub, bool(data.get("paid")), ctx)
    return ReconciliationResult(
        ReconciliationAction.RECORDED,
        tenant_id=tenant_id,
        subscription_id=sub.id,
        detail=_invoice_code(data),
    )


async def handle_invoice_payment_failed(
    data: dict[str, Any], ctx: ReconciliationContext
) -> ReconciliationResult:
    tenant_id = await resolve_tenant_id(data, ctx.store)
    invoice_code = _invoice_code(data)
    sub = await _owning_subscription(data, tenant_id, ctx)

    marked = await ctx.ledger.set_invoice_paid(invoice_code, False) if invoice_code else 0
    if not marked and sub is not None:
        await _append_invoice(data, sub, False, ctx)

    if sub is not None and _provider_subscription_status(data) == "attention":
        sub = await ctx.store.update_subscription(
            sub, {"status": SubscriptionStatus.ATTENTION.value}
        )
        await ctx.store.mirror_tenant(
            sub.tenant_id,
            status=SubscriptionStatus.PAST_DUE.value,
            tier=sub.tier,
        )
        shared.logger.warning(
            "subscription_payment_attention",
            tenant_id=str(tenant_id),
            subscription_code=sub.paystack_subscription_code,
            invoice_code=invoice_code,
        )

    shared.logger.info(
        "invoice_payment_failed_processed", tenant_id=str(tenant_id), invoice_code=invoice_code
    )
    return ReconciliationResult(
        ReconciliationAction.UPDATED,
        tenant_id=tenant_id,
        subscription_id=sub.id if sub else None,
        detail=invoice_code,
    )


async def handle_invoice_update(
    data: dict[str, Any], ctx: ReconciliationContext
) -> ReconciliationResult:
    tenant_id = await resolve_tenant_id(data, ctx.store)
    invoice_code = _invoice_code(data)
    if not invoice_code:
        shared.logger.warning("invoice_update_missing_code", tenant_id=str(tenant_id))
        return ReconciliationResult(ReconciliationAction.NOOP, tenant_id=tenant_id)

    paid = bool(data.get("paid"))
    paid_at = shared.parse_paystack_datetime(data.get("paid_at"))
    updated = await ctx.ledger.set_invoice_paid(invoice_code, paid, paid_at)
    if updated:
        return ReconciliationResult(
            ReconciliationAction.UPDATED, tenant_id=tenant_id, detail=invoice_code
        )

    # invoice.create was missed or is still in flight.
    sub = await _owning_subscription(data, tenant_id, ctx)
    if sub is None:
        return ReconciliationResult(ReconciliationAction.NOOP, tenant_id=tenant_id)
    await _append_invoice(data, sub, paid, ctx)
    return ReconciliationResult(
        ReconciliationAction.RECORDED,
        tenant_id=tenant_id,
        subscription_id=sub.id,
        detail=invoice_code,
    )
