from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from billsync.models.subscription import Subscription
from billsync.models.usage import UsageRecord
from billsync.modules.billing.domain.billing import paystack_shared
from billsync.modules.billing.domain.billing.reconciliation import ReconciliationAction
from billsync.modules.billing.domain.billing.subscription_events import (
    CodeMatch,
    RowClass,
    Transition,
    classify,
    decide_transition,
    handle_expiring_cards,
    handle_subscription_create,
    handle_subscription_disable,
    handle_subscription_not_renew,
    parse_card_expiry,
)

JAN_START = datetime(2024, 1, 1, tzinfo=timezone.utc)
JAN_END = datetime(2024, 1, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)


async def _subscriptions(db_session, tenant_id):
    result = await db_session.execute(
        select(Subscription).where(Subscription.tenant_id == tenant_id)
    )
    return list(result.scalars().all())


async def _seed(db_session, tenant, **values):
    sub = Subscription(tenant_id=tenant.id, **values)
    db_session.add(sub)
    await db_session.commit()
    return sub


# ----------------------------------------------------------------------------
# Transition table
# ----------------------------------------------------------------------------

def test_transition_table_covers_every_row_class():
    assert decide_transition(None, "SUB_1") == Transition.CREATE

    terminal = Subscription(status="cancelled", paystack_subscription_code="SUB_1")
    assert decide_transition(terminal, "SUB_1") == Transition.IGNORE_STALE
    assert decide_transition(terminal, "SUB_2") == Transition.CREATE

    pending_switch = Subscription(status="non-renewing", paystack_subscription_code="SUB_A")
    assert decide_transition(pending_switch, "SUB_B") == Transition.SWITCH
    assert decide_transition(pending_switch, "SUB_A") == Transition.REFRESH

    preliminary = Subscription(status="active", paystack_subscription_code=None)
    assert classify(preliminary, "SUB_1") == (RowClass.LIVE, CodeMatch.MISSING)
    assert decide_transition(preliminary, "SUB_1") == Transition.COMPLETE

    live = Subscription(status="attention", paystack_subscription_code="SUB_1")
    assert decide_transition(live, "SUB_1") == Transition.REFRESH
    assert decide_transition(live, "SUB_2") == Transition.SWITCH


# ----------------------------------------------------------------------------
# subscription.create
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_without_existing_row(ctx, db_session, tenant, subscription_create_data):
    result = await handle_subscription_create(subscription_create_data(tenant.id), ctx)

    assert result.action == ReconciliationAction.CREATED
    rows = await _subscriptions(db_session, tenant.id)
    assert len(rows) == 1
    sub = rows[0]
    assert sub.paystack_subscription_code == "SUB_1"
    assert sub.tier == "basic"
    assert sub.status == "active"
    assert sub.amount == 15000
    assert sub.paystack_email_token == "tok_sub_1"
    assert (sub.current_period_start, sub.current_period_end) == (JAN_START, JAN_END)

    await db_session.refresh(tenant)
    assert tenant.subscription_status == "active"
    assert tenant.subscription_tier == "basic"
    assert tenant.subscription_expires_at == datetime(2024, 2, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_create_is_idempotent_on_redelivery(ctx, db_session, tenant, subscription_create_data):
    data = subscription_create_data(tenant.id)

    first = await handle_subscription_create(data, ctx)
    snapshot = (await _subscriptions(db_session, tenant.id))[0]
    before = (
        snapshot.paystack_subscription_code,
        snapshot.tier,
        snapshot.status,
        snapshot.current_period_start,
        snapshot.current_period_end,
    )
    second = await handle_subscription_create(data, ctx)

    assert second.action == ReconciliationAction.REFRESHED
    assert second.subscription_id == first.subscription_id
    rows = await _subscriptions(db_session, tenant.id)
    assert len(rows) == 1
    after = (
        rows[0].paystack_subscription_code,
        rows[0].tier,
        rows[0].status,
        rows[0].current_period_start,
        rows[0].current_period_end,
    )
    assert after == before


@pytest.mark.asyncio
async def test_deferred_switch_overwrites_row_in_place(ctx, db_session, tenant, subscription_create_data):
    old = await _seed(
        db_session,
        tenant,
        paystack_subscription_code="SUB_A",
        paystack_plan_code="PLN_basic_monthly",
        tier="basic",
        status="non-renewing",
    )

    result = await handle_subscription_create(
        subscription_create_data(
            tenant.id,
            subscription_code="SUB_B",
            plan_code="PLN_pro_monthly",
            amount=45000,
            created_at="2024-02-01T00:05:00Z",
            next_payment_date="2024-03-01T00:00:00Z",
        ),
        ctx,
    )

    assert result.action == ReconciliationAction.SWITCHED
    rows = await _subscriptions(db_session, tenant.id)
    assert len(rows) == 1
    sub = rows[0]
    assert sub.id == old.id
    assert sub.paystack_subscription_code == "SUB_B"
    assert sub.paystack_plan_code == "PLN_pro_monthly"
    assert sub.tier == "professional"
    assert sub.status == "active"
    assert sub.current_period_end == datetime(2024, 2, 29, 23, 59, 59, 999999, tzinfo=timezone.utc)

    await db_session.refresh(tenant)
    assert tenant.subscription_tier == "professional"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "row_plan,warned", [("PLN_pro_monthly", False), ("PLN_basic_monthly", True)]
)
async def test_switch_warns_only_for_unplanned_replacement(
    ctx, db_session, tenant, subscription_create_data, row_plan, warned
):
    # charge.success for the new plan can land first and reactivate the row
    await _seed(
        db_session,
        tenant,
        paystack_subscription_code="SUB_A",
        paystack_plan_code=row_plan,
        status="active",
    )

    with patch.object(paystack_shared, "logger") as logger:
        result = await handle_subscription_create(
            subscription_create_data(tenant.id, subscription_code="SUB_B", plan_code="PLN_pro_monthly"),
            ctx,
        )

    assert result.action == ReconciliationAction.SWITCHED
    warnings = [c.args[0] for c in logger.warning.call_args_list]
    assert ("subscription_replaced_without_deferred_switch" in warnings) is warned


@pytest.mark.asyncio
async def test_terminal_row_with_same_code_is_stale(ctx, db_session, tenant, subscription_create_data):
    await _seed(db_session, tenant, paystack_subscription_code="SUB_1", status="cancelled")

    result = await handle_subscription_create(subscription_create_data(tenant.id), ctx)

    assert result.action == ReconciliationAction.IGNORED
    rows = await _subscriptions(db_session, tenant.id)
    assert [r.status for r in rows] == ["cancelled"]


@pytest.mark.asyncio
async def test_resubscribe_after_cancel_keeps_history(ctx, db_session, tenant, subscription_create_data):
    await _seed(db_session, tenant, paystack_subscription_code="SUB_old", status="cancelled")

    result = await handle_subscription_create(
        subscription_create_data(tenant.id, subscription_code="SUB_new"), ctx
    )

    assert result.action == ReconciliationAction.CREATED
    rows = await _subscriptions(db_session, tenant.id)
    assert sorted((r.paystack_subscription_code, r.status) for r in rows) == [
        ("SUB_new", "active"),
        ("SUB_old", "cancelled"),
    ]


@pytest.mark.asyncio
async def test_live_row_with_other_code_is_switched(ctx, db_session, tenant, subscription_create_data):
    old = await _seed(db_session, tenant, paystack_subscription_code="SUB_A", status="active")

    result = await handle_subscription_create(
        subscription_create_data(tenant.id, subscription_code="SUB_B"), ctx
    )

    assert result.action == ReconciliationAction.SWITCHED
    assert result.subscription_id == old.id
    assert len(await _subscriptions(db_session, tenant.id)) == 1


@pytest.mark.asyncio
async def test_refresh_never_moves_period_backward(ctx, db_session, tenant, subscription_create_data):
    later_end = datetime(2024, 2, 29, 23, 59, 59, 999999, tzinfo=timezone.utc)
    await _seed(
        db_session,
        tenant,
        paystack_subscription_code="SUB_1",
        status="active",
        current_period_start=datetime(2024, 2, 1, tzinfo=timezone.utc),
        current_period_end=later_end,
    )

    # Redelivery of the original January event
    await handle_subscription_create(subscription_create_data(tenant.id), ctx)

    sub = (await _subscriptions(db_session, tenant.id))[0]
    assert sub.current_period_start == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert sub.current_period_end == later_end


@pytest.mark.asyncio
async def test_refresh_of_pending_switch_keeps_non_renewing(ctx, db_session, tenant, subscription_create_data):
    await _seed(db_session, tenant, paystack_subscription_code="SUB_1", status="non-renewing")

    result = await handle_subscription_create(subscription_create_data(tenant.id), ctx)

    assert result.action == ReconciliationAction.REFRESHED
    assert (await _subscriptions(db_session, tenant.id))[0].status == "non-renewing"


@pytest.mark.asyncio
async def test_create_repairs_placeholder_usage_only(ctx, db_session, tenant, subscription_create_data):
    sub = await _seed(db_session, tenant, status="active", paystack_plan_code="PLN_basic_monthly")
    paid_at = datetime(2024, 1, 1, 9, 59, tzinfo=timezone.utc)
    distinct_start = datetime(2023, 12, 1, tzinfo=timezone.utc)
    distinct_end = datetime(2023, 12, 31, tzinfo=timezone.utc)
    db_session.add_all(
        [
            UsageRecord(
                tenant_id=tenant.id,
                subscription_id=sub.id,
                reference="T_placeholder",
                metric="payment",
                period_start=paid_at,
                period_end=paid_at,
            ),
            UsageRecord(
                tenant_id=tenant.id,
                subscription_id=sub.id,
                reference="INV_december",
                metric="invoice",
                period_start=distinct_start,
                period_end=distinct_end,
            ),
        ]
    )
    await db_session.commit()

    await handle_subscription_create(subscription_create_data(tenant.id), ctx)

    rows = {
        r.reference: r
        for r in (await db_session.execute(select(UsageRecord))).scalars().all()
    }
    for row in rows.values():
        await db_session.refresh(row)
    assert (rows["T_placeholder"].period_start, rows["T_placeholder"].period_end) == (JAN_START, JAN_END)
    assert (rows["INV_december"].period_start, rows["INV_december"].period_end) == (
        distinct_start,
        distinct_end,
    )


@pytest.mark.asyncio
async def test_unmapped_plan_code_defaults_to_baseline_tier(ctx, db_session, tenant, subscription_create_data):
    await handle_subscription_create(
        subscription_create_data(tenant.id, plan_code="PLN_not_in_catalog"), ctx
    )
    assert (await _subscriptions(db_session, tenant.id))[0].tier == "free"


@pytest.mark.asyncio
async def test_unknown_period_does_not_overwrite_bounds(ctx, db_session, tenant, subscription_create_data):
    data = subscription_create_data(tenant.id)
    data.pop("createdAt")

    await handle_subscription_create(data, ctx)

    sub = (await _subscriptions(db_session, tenant.id))[0]
    assert sub.current_period_start is None
    assert sub.current_period_end is None


# ----------------------------------------------------------------------------
# subscription.disable / not_renew / expiring_cards
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("provider_status,expected", [("complete", "completed"), ("cancelled", "cancelled")])
async def test_disable_sets_terminal_status(ctx, db_session, tenant, provider_status, expected):
    await _seed(db_session, tenant, paystack_subscription_code="SUB_1", status="active", tier="basic")

    await handle_subscription_disable(
        {"subscription_code": "SUB_1", "status": provider_status, "customer": {}}, ctx
    )

    assert (await _subscriptions(db_session, tenant.id))[0].status == expected
    await db_session.refresh(tenant)
    assert tenant.subscription_status == expected


@pytest.mark.asyncio
async def test_disable_of_retired_code_leaves_switched_row_alone(
    ctx, db_session, tenant, subscription_create_data
):
    await _seed(
        db_session,
        tenant,
        paystack_subscription_code="SUB_A",
        paystack_plan_code="PLN_basic_monthly",
        tier="basic",
        status="non-renewing",
    )
    await handle_subscription_create(
        subscription_create_data(tenant.id, subscription_code="SUB_B", plan_code="PLN_pro_monthly"),
        ctx,
    )

    result = await handle_subscription_disable(
        {
            "subscription_code": "SUB_A",
            "status": "complete",
            "customer": {"metadata": {"tenant_id": str(tenant.id)}},
        },
        ctx,
    )

    assert result.action == ReconciliationAction.NOOP
    rows = await _subscriptions(db_session, tenant.id)
    for row in rows:
        await db_session.refresh(row)
    assert [(r.paystack_subscription_code, r.status, r.tier) for r in rows] == [
        ("SUB_B", "active", "professional")
    ]
    await db_session.refresh(tenant)
    assert tenant.subscription_status == "active"


@pytest.mark.asyncio
async def test_disable_without_code_uses_tenant_row(ctx, db_session, tenant):
    await _seed(db_session, tenant, paystack_subscription_code="SUB_1", status="active")

    await handle_subscription_disable(
        {"status": "cancelled", "customer": {"metadata": {"tenant_id": str(tenant.id)}}}, ctx
    )

    assert (await _subscriptions(db_session, tenant.id))[0].status == "cancelled"


@pytest.mark.asyncio
async def test_not_renew_marks_row_without_touching_tenant(ctx, db_session, tenant):
    await _seed(db_session, tenant, paystack_subscription_code="SUB_1", status="active")
    tenant.subscription_status = "active"
    await db_session.commit()

    result = await handle_subscription_not_renew(
        {"subscription_code": "SUB_1", "status": "non-renewing", "customer": {}}, ctx
    )

    assert result.action == ReconciliationAction.UPDATED
    assert (await _subscriptions(db_session, tenant.id))[0].status == "non-renewing"
    await db_session.refresh(tenant)
    assert tenant.subscription_status == "active"


def test_parse_card_expiry_month_year():
    assert parse_card_expiry("02/2024") == datetime(2024, 2, 29, 23, 59, 59, 999999, tzinfo=timezone.utc)
    assert parse_card_expiry("13/2024") is None


@pytest.mark.asyncio
async def test_expiring_cards_entries_are_independent(ctx, db_session, tenant):
    await _seed(db_session, tenant, paystack_subscription_code="SUB_1", status="active")

    result = await handle_expiring_cards(
        [
            {"expiry_date": "12/2024", "description": "visa ending with 4081"},
            "garbage",
            {"expiry_date": "12/2024", "subscription": {"subscription_code": "SUB_1"}},
        ],
        ctx,
    )

    assert result.action == ReconciliationAction.UPDATED
    assert result.detail == "updated=1 failed=2"
    sub = (await _subscriptions(db_session, tenant.id))[0]
    await db_session.refresh(sub)
    assert sub.card_expiring is True
    assert sub.card_expiry_date == datetime(2024, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_expiring_cards_accepts_single_object(ctx, db_session, tenant):
    await _seed(db_session, tenant, paystack_subscription_code="SUB_1", status="active")

    await handle_expiring_cards(
        {"expiry_date": "01/2025", "subscription": {"subscription_code": "SUB_1"}}, ctx
    )

    count = await db_session.scalar(
        select(func.count()).select_from(Subscription).where(Subscription.card_expiring.is_(True))
    )
    assert count == 1
