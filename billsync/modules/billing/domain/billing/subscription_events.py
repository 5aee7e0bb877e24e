"""
subscription.* event handlers.

subscription.create is the core of the engine. The same event can create a
row, complete a preliminary one, finish a deferred plan switch or simply be a
redelivery; which one is decided by the transition table below, keyed by the
class of the tenant's current row and how its code relates to the event's.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

from billsync.models.subscription import Subscription

from . import paystack_shared as shared
from .billing_periods import end_of_day, period_from_subscription
from .reconciliation import (
    ReconciliationAction,
    ReconciliationContext,
    ReconciliationResult,
)
from .tenant_resolution import resolve_tenant_id

SubscriptionStatus = shared.SubscriptionStatus


class RowClass(str, Enum):
    NONE = "none"
    TERMINAL = "terminal"
    NON_RENEWING = "non_renewing"
    LIVE = "live"


class CodeMatch(str, Enum):
    SAME = "same"
    OTHER = "other"
    MISSING = "missing"


class Transition(str, Enum):
    CREATE = "create"
    COMPLETE = "complete"
    SWITCH = "switch"
    REFRESH = "refresh"
    IGNORE_STALE = "ignore_stale"


TRANSITIONS: dict[tuple[RowClass, CodeMatch], Transition] = {
    (RowClass.NONE, CodeMatch.MISSING): Transition.CREATE,
    (RowClass.TERMINAL, CodeMatch.SAME): Transition.IGNORE_STALE,
    (RowClass.TERMINAL, CodeMatch.OTHER): Transition.CREATE,
    (RowClass.TERMINAL, CodeMatch.MISSING): Transition.CREATE,
    (RowClass.NON_RENEWING, CodeMatch.OTHER): Transition.SWITCH,
    (RowClass.NON_RENEWING, CodeMatch.MISSING): Transition.SWITCH,
    (RowClass.NON_RENEWING, CodeMatch.SAME): Transition.REFRESH,
    (RowClass.LIVE, CodeMatch.MISSING): Transition.COMPLETE,
    (RowClass.LIVE, CodeMatch.SAME): Transition.REFRESH,
    (RowClass.LIVE, CodeMatch.OTHER): Transition.SWITCH,
}

_TRANSITION_ACTIONS = {
    Transition.CREATE: ReconciliationAction.CREATED,
    Transition.COMPLETE: ReconciliationAction.COMPLETED,
    Transition.SWITCH: ReconciliationAction.SWITCHED,
    Transition.REFRESH: ReconciliationAction.REFRESHED,
    Transition.IGNORE_STALE: ReconciliationAction.IGNORED,
}


def classify(existing: Optional[Subscription], subscription_code: str) -> tuple[RowClass, CodeMatch]:
    if existing is None:
        return RowClass.NONE, CodeMatch.MISSING

    status = existing.status_enum
    if status.is_terminal:
        row_class = RowClass.TERMINAL
    elif status == SubscriptionStatus.NON_RENEWING:
        row_class = RowClass.NON_RENEWING
    else:
        row_class = RowClass.LIVE

    if not existing.paystack_subscription_code:
        return row_class, CodeMatch.MISSING
    if existing.paystack_subscription_code == subscription_code:
        return row_class, CodeMatch.SAME
    return row_class, CodeMatch.OTHER


def decide_transition(existing: Optional[Subscription], subscription_code: str) -> Transition:
    return TRANSITIONS[classify(existing, subscription_code)]


def tenant_expiry(sub: Subscription) -> Optional[datetime]:
    return sub.next_payment_date or sub.current_period_end


async def mirror_subscription(ctx: ReconciliationContext, sub: Subscription) -> None:
    await ctx.store.mirror_tenant(
        sub.tenant_id,
        status=sub.status,
        tier=sub.tier,
        expires_at=tenant_expiry(sub),
    )


def _keep_period_forward(
    existing: Subscription,
    period_start: Optional[datetime],
    period_end: Optional[datetime],
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Bounds for a given subscription code never move backward."""
    if period_start is None or period_end is None:
        return None, None
    if existing.current_period_end is not None and period_end < existing.current_period_end:
        shared.logger.info(
            "subscription_period_regression_ignored",
            subscription_id=str(existing.id),
            current_period_end=existing.current_period_end.isoformat(),
            incoming_period_end=period_end.isoformat(),
        )
        return None, None
    return period_start, period_end


def subscription_values(
    data: dict[str, Any], ctx: ReconciliationContext
) -> dict[str, Any]:
    """Column values carried by a Paystack subscription object."""
    plan_code = shared.plan_code_of(data)
    period_start, period_end = period_from_subscription(
        data, interval=ctx.tiers.interval_for(plan_code)
    )
    values: dict[str, Any] = {
        "paystack_subscription_code": shared.subscription_code_of(data),
        "paystack_plan_code": plan_code,
        "tier": ctx.tiers.resolve(plan_code).value,
        "status": SubscriptionStatus.from_provider(data.get("status")).value,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "next_payment_date": shared.parse_paystack_datetime(data.get("next_payment_date")),
    }
    optional = {
        "paystack_customer_code": shared.customer_code_of(data),
        "paystack_email_token": data.get("email_token"),
        "amount": shared.coerce_amount(data.get("amount")),
    }
    values.update({k: v for k, v in optional.items() if v is not None})
    return values


async def handle_subscription_create(
    data: dict[str, Any], ctx: ReconciliationContext
) -> ReconciliationResult:
    subscription_code = shared.subscription_code_of(data)
    tenant_id = await resolve_tenant_id(data, ctx.store)
    if not subscription_code:
        shared.logger.warning("subscription_create_missing_code", tenant_id=str(tenant_id))
        return ReconciliationResult(ReconciliationAction.NOOP, tenant_id=tenant_id)

    existing = await ctx.store.get_subscription_for_tenant(tenant_id)
    transition = decide_transition(existing, subscription_code)
    values = subscription_values(data, ctx)

    shared.logger.info(
        "subscription_create_transition",
        tenant_id=str(tenant_id),
        subscription_code=subscription_code,
        transition=transition.value,
        existing_status=existing.status if existing else None,
        existing_code=existing.paystack_subscription_code if existing else None,
    )

    if transition == Transition.IGNORE_STALE:
        return ReconciliationResult(
            ReconciliationAction.IGNORED,
            tenant_id=tenant_id,
            subscription_id=existing.id if existing else None,
            detail="subscription already terminal",
        )

    if transition == Transition.CREATE or existing is None:
        values = {k: v for k, v in values.items() if v is not None}
        sub, _ = await ctx.store.get_or_create_subscription(tenant_id, values)
        if sub.paystack_subscription_code != subscription_code:
            # A concurrent charge.success created a preliminary row first.
            sub = await ctx.store.update_subscription(sub, values)
    else:
        if (
            transition == Transition.SWITCH
            and existing.status_enum != SubscriptionStatus.NON_RENEWING
            # charge.success for the new plan may already have reactivated the row
            and existing.paystack_plan_code != values["paystack_plan_code"]
        ):
            shared.logger.warning(
                "subscription_replaced_without_deferred_switch",
                tenant_id=str(tenant_id),
                previous_code=existing.paystack_subscription_code,
                subscription_code=subscription_code,
            )
        if transition == Transition.REFRESH:
            start, end = _keep_period_forward(
                existing, values["current_period_start"], values["current_period_end"]
            )
            values["current_period_start"], values["current_period_end"] = start, end
            if existing.status_enum == SubscriptionStatus.NON_RENEWING:
                # Redelivery must not undo a pending switch.
                values.pop("status")
        values = {k: v for k, v in values.items() if v is not None}
        sub = await ctx.store.update_subscription(existing, values)

    await mirror_subscription(ctx, sub)
    await ctx.ledger.repair_periods(sub, sub.current_period_start, sub.current_period_end)

    return ReconciliationResult(
        _TRANSITION_ACTIONS[transition],
        tenant_id=tenant_id,
        subscription_id=sub.id,
        detail=subscription_code,
    )


async def handle_subscription_disable(
    data: dict[str, Any], ctx: ReconciliationContext
) -> ReconciliationResult:
    tenant_id = await resolve_tenant_id(data, ctx.store)
    subscription_code = shared.subscription_code_of(data)

    # Retired codes from a deferred switch must not reach the tenant's current row.
    if subscription_code:
        sub = await ctx.store.get_subscription_by_code(subscription_code)
    else:
        sub = await ctx.store.get_subscription_for_tenant(tenant_id)
    if sub is None:
        shared.logger.warning(
            "subscription_disable_no_subscription",
            tenant_id=str(tenant_id),
            subscription_code=subscription_code,
        )
        return ReconciliationResult(ReconciliationAction.NOOP, tenant_id=tenant_id)

    provider_status = str(data.get("status") or "").lower()
    status = (
        SubscriptionStatus.COMPLETED
        if provider_status in ("complete", "completed")
        else SubscriptionStatus.CANCELLED
    )
    sub = await ctx.store.update_subscription(sub, {"status": status.value})
    await mirror_subscription(ctx, sub)

    shared.logger.info(
        "subscription_disabled",
        tenant_id=str(tenant_id),
        subscription_code=subscription_code,
        status=status.value,
    )
    return ReconciliationResult(
        ReconciliationAction.UPDATED, tenant_id=tenant_id, subscription_id=sub.id, detail=status.value
    )


async def handle_subscription_not_renew(
    data: dict[str, Any], ctx: ReconciliationContext
) -> ReconciliationResult:
    """Marks the row non-renewing only; the tenant keeps access until the period ends."""
    tenant_id = await resolve_tenant_id(data, ctx.store)
    subscription_code = shared.subscription_code_of(data)

    sub = await ctx.store.get_subscription_by_code(subscription_code) if subscription_code else None
    if sub is None or sub.status_enum.is_terminal:
        shared.logger.warning(
            "subscription_not_renew_no_live_subscription",
            tenant_id=str(tenant_id),
            subscription_code=subscription_code,
        )
        return ReconciliationResult(ReconciliationAction.NOOP, tenant_id=tenant_id)

    sub = await ctx.store.update_subscription(
        sub, {"status": SubscriptionStatus.NON_RENEWING.value}
    )
    return ReconciliationResult(
        ReconciliationAction.UPDATED,
        tenant_id=tenant_id,
        subscription_id=sub.id,
        detail=SubscriptionStatus.NON_RENEWING.value,
    )


def parse_card_expiry(value: Any) -> Optional[datetime]:
    """Card expiry arrives as "MM/YYYY"; the card is valid through that month."""
    if isinstance(value, str) and "/" in value:
        month, _, year = value.strip().partition("/")
        try:
            first_day = datetime(int(year), int(month), 1, tzinfo=timezone.utc)
        except ValueError:
            shared.logger.warning("card_expiry_unparseable", value=value[:16])
            return None
        return end_of_day(first_day + relativedelta(months=1) - timedelta(days=1))
    return shared.parse_paystack_datetime(value)


async def handle_expiring_cards(
    data: Any, ctx: ReconciliationContext
) -> ReconciliationResult:
    """
    Each entry is applied on its own; one bad entry never blocks the others.
    Entries carry {expiry_date, subscription: {subscription_code}}.
    """
    entries = data if isinstance(data, list) else [data]
    updated = 0
    failed = 0
    for entry in entries:
        if not isinstance(entry, dict):
            failed += 1
            shared.logger.warning("expiring_card_entry_invalid", entry_type=type(entry).__name__)
            continue
        subscription_code = shared.subscription_code_of(entry)
        try:
            if not subscription_code:
                raise ValueError("expiring card entry has no subscription code")
            rows = await ctx.store.update_subscription_by_code(
                subscription_code,
                {
                    "card_expiring": True,
                    "card_expiry_date": parse_card_expiry(entry.get("expiry_date")),
                },
            )
            updated += rows
        except Exception as exc:
            failed += 1
            shared.logger.error(
                "expiring_card_entry_failed",
                subscription_code=subscription_code,
                error=str(exc),
            )

    shared.logger.info("expiring_cards_processed", updated=updated, failed=failed)
    return ReconciliationResult(
        ReconciliationAction.UPDATED if updated else ReconciliationAction.NOOP,
        detail=f"updated={updated} failed={failed}",
    )
